import subprocess
from unittest.mock import MagicMock, patch

import pytest

from clipstash.clipboard import PasteboardClipboard, WaylandClipboard, detect_clipboard
from clipstash.errors import ClipboardEmpty, ClipboardError


def _result(stdout=b"", returncode=0, stderr=b""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestWaylandClipboard:
    @patch("clipstash.clipboard.subprocess.run")
    def test_offered_types(self, mock_run):
        mock_run.return_value = _result(b"text/html\nimage/png\n\ntext/plain\n")
        assert WaylandClipboard().offered_types() == ["text/html", "image/png", "text/plain"]
        assert mock_run.call_args[0][0] == ["wl-paste", "--list-types"]

    @patch("clipstash.clipboard.subprocess.run")
    def test_offered_types_empty(self, mock_run):
        mock_run.return_value = _result(b"")
        with pytest.raises(ClipboardEmpty):
            WaylandClipboard().offered_types()

    @patch("clipstash.clipboard.subprocess.run")
    def test_read_text_uses_generic_type(self, mock_run):
        mock_run.return_value = _result(b"hello")
        assert WaylandClipboard().read("text/plain") == (b"hello", "text/plain")
        assert mock_run.call_args[0][0] == ["wl-paste", "--no-newline", "--type", "text"]

    @patch("clipstash.clipboard.subprocess.run")
    def test_read_image(self, mock_run):
        mock_run.return_value = _result(b"\x89PNG")
        data, mime = WaylandClipboard().read("image/png")
        assert mime == "image/png"
        assert mock_run.call_args[0][0] == ["wl-paste", "--no-newline", "--type", "image/png"]

    @patch("clipstash.clipboard.subprocess.run")
    def test_nothing_copied_is_empty(self, mock_run):
        mock_run.return_value = _result(returncode=1, stderr=b"Nothing is copied\n")
        with pytest.raises(ClipboardEmpty):
            WaylandClipboard().read("text/plain")

    @patch("clipstash.clipboard.subprocess.run")
    def test_other_failure_is_error(self, mock_run):
        mock_run.return_value = _result(returncode=1, stderr=b"Failed to connect to a Wayland server\n")
        with pytest.raises(ClipboardError) as exc_info:
            WaylandClipboard().read("text/plain")
        assert not isinstance(exc_info.value, ClipboardEmpty)

    @patch("clipstash.clipboard.subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="wl-paste", timeout=5.0))
    def test_timeout(self, mock_run):
        with pytest.raises(ClipboardError, match="timed out"):
            WaylandClipboard().read("text/plain")

    @patch("clipstash.clipboard.subprocess.run", side_effect=FileNotFoundError("wl-paste"))
    def test_missing_binary(self, mock_run):
        with pytest.raises(ClipboardError, match="failed to run"):
            WaylandClipboard().offered_types()

    @patch("clipstash.clipboard.subprocess.run")
    def test_write(self, mock_run):
        mock_run.return_value = _result()
        WaylandClipboard().write(b"hello", "text/plain")
        assert mock_run.call_args[0][0] == ["wl-copy", "--type", "text/plain"]
        assert mock_run.call_args[1]["input"] == b"hello"

    @patch("clipstash.clipboard.subprocess.run")
    def test_write_paste_once(self, mock_run):
        mock_run.return_value = _result()
        WaylandClipboard().write(b"hello", None, serve_count=1)
        assert mock_run.call_args[0][0] == ["wl-copy", "--paste-once"]

    @patch("clipstash.clipboard.subprocess.run")
    def test_clear(self, mock_run):
        mock_run.return_value = _result()
        WaylandClipboard().clear()
        assert mock_run.call_args[0][0] == ["wl-copy", "--clear"]


@pytest.fixture
def mock_pasteboard():
    appkit = MagicMock()
    pasteboard = MagicMock()
    appkit.NSPasteboard.generalPasteboard.return_value = pasteboard
    foundation = MagicMock()
    with patch.dict("sys.modules", {"AppKit": appkit, "Foundation": foundation}):
        yield pasteboard


class TestPasteboardClipboard:
    def test_offered_types_mapped(self, mock_pasteboard):
        mock_pasteboard.types.return_value = ["public.html", "public.png", "com.apple.custom", "public.utf8-plain-text"]
        assert PasteboardClipboard().offered_types() == ["text/html", "image/png", "text/plain"]

    def test_empty_pasteboard(self, mock_pasteboard):
        mock_pasteboard.types.return_value = []
        with pytest.raises(ClipboardEmpty):
            PasteboardClipboard().offered_types()

    def test_read_text(self, mock_pasteboard):
        mock_pasteboard.stringForType_.return_value = "héllo"
        assert PasteboardClipboard().read("text/plain") == ("héllo".encode("utf-8"), "text/plain")
        mock_pasteboard.stringForType_.assert_called_once_with("public.utf8-plain-text")

    def test_read_image(self, mock_pasteboard):
        mock_pasteboard.dataForType_.return_value = b"\x89PNG"
        assert PasteboardClipboard().read("image/png") == (b"\x89PNG", "image/png")
        mock_pasteboard.dataForType_.assert_called_once_with("public.png")

    def test_read_missing_data(self, mock_pasteboard):
        mock_pasteboard.dataForType_.return_value = None
        with pytest.raises(ClipboardEmpty):
            PasteboardClipboard().read("image/png")

    def test_unsupported_type(self, mock_pasteboard):
        with pytest.raises(ClipboardError):
            PasteboardClipboard().read("application/x-unknown")

    def test_clear(self, mock_pasteboard):
        PasteboardClipboard().clear()
        mock_pasteboard.clearContents.assert_called_once()

    def test_write(self, mock_pasteboard):
        mock_pasteboard.setData_forType_.return_value = True
        PasteboardClipboard().write(b"hello", "text/plain")
        mock_pasteboard.clearContents.assert_called_once()
        assert mock_pasteboard.setData_forType_.call_args[0][1] == "public.utf8-plain-text"


class TestDetectClipboard:
    def test_wayland(self):
        with patch("clipstash.clipboard.sys.platform", "linux"):
            with patch("clipstash.clipboard.shutil.which", return_value="/usr/bin/wl-paste"):
                assert isinstance(detect_clipboard(), WaylandClipboard)

    def test_nothing_available(self):
        with patch("clipstash.clipboard.sys.platform", "linux"):
            with patch("clipstash.clipboard.shutil.which", return_value=None):
                with pytest.raises(ClipboardError, match="wl-clipboard"):
                    detect_clipboard()

    def test_macos(self, mock_pasteboard):
        with patch("clipstash.clipboard.sys.platform", "darwin"):
            assert isinstance(detect_clipboard(), PasteboardClipboard)
