"""System clipboard backends.

The watch loop and the browser only talk to the small ``Clipboard``
protocol below; the desktop-specific plumbing lives in the backends.
"""

import logging
import shutil
import subprocess
import sys
from typing import Protocol

from clipstash.errors import ClipboardEmpty, ClipboardError
from clipstash.mime import TEXT_PLAIN

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT = 5.0


class Clipboard(Protocol):
    def offered_types(self) -> list[str]: ...

    def read(self, mime: str) -> tuple[bytes, str]: ...

    def write(self, data: bytes, mime: str | None, serve_count: int | None = None) -> None: ...

    def clear(self) -> None: ...


def _is_empty_message(stderr: str) -> bool:
    lowered = stderr.lower()
    return "nothing is copied" in lowered or "no selection" in lowered or "empty" in lowered


class WaylandClipboard:
    """Clipboard access through the ``wl-paste`` and ``wl-copy`` tools."""

    def __init__(self, timeout: float = COMMAND_TIMEOUT):
        self._timeout = timeout

    def _run(self, args: list[str], data: bytes | None = None) -> bytes:
        try:
            result = subprocess.run(
                args,
                input=data,
                capture_output=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ClipboardError(f"{args[0]} timed out after {self._timeout}s") from e
        except OSError as e:
            raise ClipboardError(f"failed to run {args[0]}: {e}") from e

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            if _is_empty_message(stderr):
                raise ClipboardEmpty(stderr)
            raise ClipboardError(f"{args[0]} exited with {result.returncode}: {stderr}")
        return result.stdout

    def offered_types(self) -> list[str]:
        out = self._run(["wl-paste", "--list-types"])
        types = [t.strip() for t in out.decode("utf-8", errors="replace").splitlines() if t.strip()]
        if not types:
            raise ClipboardEmpty("no types offered")
        return types

    def read(self, mime: str) -> tuple[bytes, str]:
        # "text" lets wl-paste pick whichever text flavour is on offer
        requested = "text" if mime == TEXT_PLAIN else mime
        data = self._run(["wl-paste", "--no-newline", "--type", requested])
        if not data:
            raise ClipboardEmpty(f"no data for {mime}")
        return data, mime

    def write(self, data: bytes, mime: str | None, serve_count: int | None = None) -> None:
        args = ["wl-copy"]
        if mime:
            args += ["--type", mime]
        if serve_count == 1:
            args.append("--paste-once")
        self._run(args, data)

    def clear(self) -> None:
        self._run(["wl-copy", "--clear"])


# Pasteboard UTIs and the MIME types they carry
PASTEBOARD_TYPES: dict[str, str] = {
    "public.png": "image/png",
    "public.jpeg": "image/jpeg",
    "public.tiff": "image/tiff",
    "public.html": "text/html",
    "public.rtf": "text/rtf",
    "public.file-url": "text/uri-list",
    "public.utf8-plain-text": TEXT_PLAIN,
}


class PasteboardClipboard:
    """Clipboard access on macOS through NSPasteboard."""

    def __init__(self):
        from AppKit import NSPasteboard

        self._pasteboard = NSPasteboard.generalPasteboard()

    def offered_types(self) -> list[str]:
        types = self._pasteboard.types()
        if not types:
            raise ClipboardEmpty("pasteboard is empty")
        offered = []
        for uti in types:
            mime = PASTEBOARD_TYPES.get(str(uti))
            if mime and mime not in offered:
                offered.append(mime)
        if not offered:
            raise ClipboardError(f"no supported types among {list(types)}")
        return offered

    def _uti_for(self, mime: str) -> str:
        for uti, candidate in PASTEBOARD_TYPES.items():
            if candidate == mime:
                return uti
        raise ClipboardError(f"unsupported type {mime}")

    def read(self, mime: str) -> tuple[bytes, str]:
        if mime == TEXT_PLAIN:
            text = self._pasteboard.stringForType_(self._uti_for(TEXT_PLAIN))
            if not text:
                raise ClipboardEmpty("no text on pasteboard")
            return str(text).encode("utf-8"), mime

        data = self._pasteboard.dataForType_(self._uti_for(mime))
        if data is None:
            raise ClipboardEmpty(f"no data for {mime}")
        return bytes(data), mime

    def write(self, data: bytes, mime: str | None, serve_count: int | None = None) -> None:
        from Foundation import NSData

        uti = self._uti_for(mime or TEXT_PLAIN)
        self._pasteboard.clearContents()
        ns_data = NSData.dataWithBytes_length_(data, len(data))
        if not self._pasteboard.setData_forType_(ns_data, uti):
            raise ClipboardError(f"pasteboard refused {mime}")

    def clear(self) -> None:
        self._pasteboard.clearContents()


def detect_clipboard() -> Clipboard:
    if sys.platform == "darwin":
        return PasteboardClipboard()
    if shutil.which("wl-paste") and shutil.which("wl-copy"):
        return WaylandClipboard()
    raise ClipboardError("No clipboard backend found. Install wl-clipboard (wl-paste, wl-copy).")
