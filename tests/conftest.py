import io

import pytest
from PIL import Image

from clipstash.errors import ClipboardEmpty
from clipstash.mime import TEXT_PLAIN
from clipstash.storage import StorageManager


class FakeClock:
    """Manually advanced stand-in for ``time.time``."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeClipboard:
    """In-memory clipboard holding one (data, mime) pair."""

    def __init__(self, data: bytes | None = None, mime: str = TEXT_PLAIN, offered: list[str] | None = None):
        self.data = data
        self.mime = mime
        self.offered = offered
        self.writes: list[tuple[bytes, str | None]] = []
        self.clears = 0

    def set(self, data: bytes | None, mime: str = TEXT_PLAIN) -> None:
        self.data = data
        self.mime = mime
        self.offered = None

    def offered_types(self) -> list[str]:
        if self.offered is not None:
            return self.offered
        if self.data is None:
            raise ClipboardEmpty("nothing is copied")
        return [self.mime]

    def read(self, mime: str) -> tuple[bytes, str]:
        if self.data is None:
            raise ClipboardEmpty("nothing is copied")
        return self.data, mime

    def write(self, data: bytes, mime: str | None, serve_count: int | None = None) -> None:
        self.writes.append((data, mime))
        self.data = data
        self.mime = mime or TEXT_PLAIN

    def clear(self) -> None:
        self.clears += 1
        self.data = None


def make_png(width: int = 3, height: int = 2) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (255, 0, 0)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage(clock):
    mgr = StorageManager(db_path=":memory:", clock=clock)
    yield mgr
    mgr.close()


@pytest.fixture
def clipboard():
    return FakeClipboard()


@pytest.fixture
def store_text(storage, clock):
    """Factory fixture storing text entries one clock tick apart."""

    def _store_text(*texts: str, **kwargs) -> list[int]:
        ids = []
        for text in texts:
            clock.advance(1)
            ids.append(storage.store(text.encode("utf-8"), **kwargs))
        return ids

    return _store_text
