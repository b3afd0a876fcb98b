import curses
import logging

from clipstash import __version__
from clipstash.browser import Browser
from clipstash.config import BROWSER_INPUT_TIMEOUT_MS
from clipstash.errors import NotFoundError
from clipstash.models import ClipboardEntry
from clipstash.storage import StorageManager
from clipstash.utils import preview_entry

logger = logging.getLogger(__name__)

Action = tuple[str, str | None]

NAV_ACTIONS = frozenset({"up", "down", "page_up", "page_down", "home", "end"})
ENTER_KEYS = (10, 13, curses.KEY_ENTER)
BACKSPACE_KEYS = (8, 127, curses.KEY_BACKSPACE)
ESCAPE = 27

_COMMON_KEYS = {
    curses.KEY_UP: "up",
    curses.KEY_DOWN: "down",
    curses.KEY_PPAGE: "page_up",
    curses.KEY_NPAGE: "page_down",
    curses.KEY_RESIZE: "resize",
}

_NORMAL_KEYS = {
    ord("k"): "up",
    ord("j"): "down",
    ord("g"): "home",
    curses.KEY_HOME: "home",
    ord("G"): "end",
    curses.KEY_END: "end",
    ord("d"): "delete",
    curses.KEY_DC: "delete",
    ord("/"): "search",
    ord("q"): "quit",
    ESCAPE: "quit",
}


def _translate(key: int | str, search_mode: bool) -> Action | None:
    # get_wch hands back typed characters as str and function keys as int
    if isinstance(key, str):
        if search_mode and key.isprintable():
            return ("char", key)
        key = ord(key)
    if key in _COMMON_KEYS:
        return (_COMMON_KEYS[key], None)
    if search_mode:
        if key in ENTER_KEYS:
            return ("accept", None)
        if key == ESCAPE:
            return ("cancel", None)
        if key in BACKSPACE_KEYS:
            return ("backspace", None)
        return None
    if key in ENTER_KEYS:
        return ("copy", None)
    name = _NORMAL_KEYS.get(key)
    return (name, None) if name else None


def coalesce_keys(keys: list[int | str], search_mode: bool = False) -> list[Action]:
    """Turn one tick's worth of queued keys into actions.

    Each navigation action is kept at most once per tick so a held-down key
    cannot scroll faster than the screen redraws. Typed search characters
    are all kept. Processing stops after an action that leaves the browser.
    """
    actions: list[Action] = []
    seen_nav: set[str] = set()
    for key in keys:
        action = _translate(key, search_mode)
        if action is None:
            continue
        name = action[0]
        if name in NAV_ACTIONS:
            if name in seen_nav:
                continue
            seen_nav.add(name)
        elif name == "search":
            search_mode = True
        elif name in ("accept", "cancel"):
            search_mode = False
        actions.append(action)
        if name in ("quit", "copy"):
            break
    return actions


def apply_action(browser: Browser, action: Action) -> str | None:
    """Apply one action. Returns ``"quit"`` or ``"copy"`` when the loop should end."""
    name, arg = action
    if name == "up":
        browser.move(-1)
    elif name == "down":
        browser.move(1)
    elif name == "page_up":
        browser.page(-1)
    elif name == "page_down":
        browser.page(1)
    elif name == "home":
        browser.home()
    elif name == "end":
        browser.end()
    elif name == "search":
        browser.enter_search()
    elif name == "char" and arg:
        browser.search_input(arg)
    elif name == "backspace":
        browser.search_backspace()
    elif name == "accept":
        browser.exit_search(keep_query=True)
    elif name == "cancel":
        browser.exit_search(keep_query=False)
    elif name == "delete":
        browser.delete_selected()
    elif name == "resize":
        browser.state.dirty = True
    elif name in ("quit", "copy"):
        return name
    return None


def _read_keys(stdscr) -> list[int | str]:
    keys: list[int | str] = []
    stdscr.timeout(BROWSER_INPUT_TIMEOUT_MS)
    while True:
        try:
            key = stdscr.get_wch()
        except curses.error:
            break
        keys.append(key)
        # Drain whatever else is already queued without waiting
        stdscr.timeout(0)
    return keys


def _addline(stdscr, y: int, text: str, width: int, attr: int = 0) -> None:
    try:
        stdscr.addnstr(y, 0, text.ljust(width), max(0, width - 1), attr)
    except curses.error:
        pass


def _draw(stdscr, browser: Browser, preview_width: int) -> None:
    height, width = stdscr.getmaxyx()
    stdscr.erase()
    state = browser.state

    if state.search_mode or state.search_query:
        header = f"/{state.search_query}  ({state.total} matches)"
    else:
        header = f"clipstash {__version__}  ({state.total} entries)"
    _addline(stdscr, 0, header, width, curses.A_BOLD)

    budget = max(10, min(preview_width, width - 10))
    for row, (index, entry) in enumerate(browser.visible(), start=1):
        if row >= height - 1:
            break
        line = f"{entry.id:>6}  {preview_entry(entry.contents, entry.mime, budget)}"
        attr = curses.A_REVERSE if index == state.cursor else 0
        _addline(stdscr, row, line, width, attr)

    if state.search_mode:
        footer = "type to filter  enter:keep  esc:clear"
    else:
        footer = "enter:copy  d:delete  /:search  q:quit"
    _addline(stdscr, height - 1, footer, width, curses.A_DIM)
    stdscr.refresh()


def _browse(stdscr, browser: Browser, preview_width: int) -> ClipboardEntry | None:
    try:
        curses.curs_set(0)
    except curses.error:
        pass
    stdscr.keypad(True)

    while True:
        height, _ = stdscr.getmaxyx()
        browser.set_window_size(max(1, height - 2))
        _draw(stdscr, browser, preview_width)

        for action in coalesce_keys(_read_keys(stdscr), browser.state.search_mode):
            outcome = apply_action(browser, action)
            if outcome == "quit":
                return None
            if outcome == "copy":
                try:
                    return browser.copy_selected()
                except NotFoundError:
                    logger.warning("Selected entry vanished before it could be copied")
                    browser.refresh_total()


def run_browser(storage: StorageManager, preview_width: int, include_expired: bool = False) -> ClipboardEntry | None:
    """Run the curses browser; returns the entry chosen for copying, if any."""
    browser = Browser(storage, include_expired=include_expired)
    return curses.wrapper(_browse, browser, preview_width)
