import curses
from unittest.mock import MagicMock, patch

import pytest

from clipstash.browser import Browser
from clipstash.tui import apply_action, coalesce_keys, run_browser


class TestCoalesceKeys:
    def test_repeated_navigation_collapsed(self):
        keys = [curses.KEY_DOWN] * 5
        assert coalesce_keys(keys) == [("down", None)]

    def test_distinct_navigation_kept(self):
        keys = ["j", "j", "k", curses.KEY_NPAGE]
        assert coalesce_keys(keys) == [("down", None), ("up", None), ("page_down", None)]

    def test_vim_and_arrow_keys_equivalent(self):
        assert coalesce_keys(["j", curses.KEY_DOWN]) == [("down", None)]

    def test_unknown_keys_ignored(self):
        assert coalesce_keys(["x", "z"]) == []

    def test_quit_stops_processing(self):
        assert coalesce_keys(["q", "j"]) == [("quit", None)]

    def test_enter_copies(self):
        assert coalesce_keys(["\n", "j"]) == [("copy", None)]

    def test_search_mode_types_characters(self):
        keys = ["/", "j", "j", "k"]
        assert coalesce_keys(keys) == [("search", None), ("char", "j"), ("char", "j"), ("char", "k")]

    def test_search_mode_from_caller(self):
        assert coalesce_keys(["q"], search_mode=True) == [("char", "q")]

    def test_search_accept_returns_to_normal(self):
        keys = ["a", "\n", "j"]
        assert coalesce_keys(keys, search_mode=True) == [("char", "a"), ("accept", None), ("down", None)]

    def test_search_escape_cancels(self):
        assert coalesce_keys(["\x1b"], search_mode=True) == [("cancel", None)]

    def test_search_backspace(self):
        assert coalesce_keys([curses.KEY_BACKSPACE, "\x7f"], search_mode=True) == [
            ("backspace", None),
            ("backspace", None),
        ]

    def test_arrows_work_while_searching(self):
        assert coalesce_keys([curses.KEY_UP], search_mode=True) == [("up", None)]

    def test_function_key_not_typed(self):
        assert coalesce_keys([curses.KEY_HOME], search_mode=True) == []

    def test_delete_key(self):
        assert coalesce_keys(["d", curses.KEY_DC]) == [("delete", None), ("delete", None)]


class TestApplyAction:
    @pytest.fixture
    def browser(self):
        return MagicMock(spec=Browser)

    @pytest.mark.parametrize(
        "action, method, args",
        [
            (("up", None), "move", (-1,)),
            (("down", None), "move", (1,)),
            (("page_up", None), "page", (-1,)),
            (("page_down", None), "page", (1,)),
            (("home", None), "home", ()),
            (("end", None), "end", ()),
            (("search", None), "enter_search", ()),
            (("char", "x"), "search_input", ("x",)),
            (("backspace", None), "search_backspace", ()),
            (("delete", None), "delete_selected", ()),
        ],
    )
    def test_dispatch(self, browser, action, method, args):
        assert apply_action(browser, action) is None
        getattr(browser, method).assert_called_once_with(*args)

    def test_accept_keeps_query(self, browser):
        apply_action(browser, ("accept", None))
        browser.exit_search.assert_called_once_with(keep_query=True)

    def test_cancel_clears_query(self, browser):
        apply_action(browser, ("cancel", None))
        browser.exit_search.assert_called_once_with(keep_query=False)

    def test_quit_and_copy_end_loop(self, browser):
        assert apply_action(browser, ("quit", None)) == "quit"
        assert apply_action(browser, ("copy", None)) == "copy"

    def test_against_real_browser(self, storage, store_text):
        store_text("one", "two", "three")
        browser = Browser(storage)
        for action in coalesce_keys(["j", "j"]):
            apply_action(browser, action)
        assert browser.state.cursor == 1


class TestRunBrowser:
    def test_wraps_curses(self, storage):
        with patch("clipstash.tui.curses.wrapper", return_value=None) as mock_wrapper:
            assert run_browser(storage, 80) is None
        mock_wrapper.assert_called_once()
        browser = mock_wrapper.call_args[0][1]
        assert isinstance(browser, Browser)
