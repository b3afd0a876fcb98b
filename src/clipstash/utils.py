import hashlib
import io

from PIL import Image, UnidentifiedImageError

from clipstash.config import DATA_DIR
from clipstash.errors import InvalidIdError

ELLIPSIS = "…"
_ASCII_WHITESPACE = frozenset(b" \t\n\r\x0b\x0c")


def compute_hash(data: str | bytes) -> int:
    """Signed 64-bit digest of ``data``, sized to fit an SQLite INTEGER."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    digest = hashlib.blake2b(data, digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def is_blank(data: bytes) -> bool:
    return all(b in _ASCII_WHITESPACE for b in data)


def truncate_text(text: str, max_len: int) -> str:
    single_line = " ".join(text.split())
    if len(single_line) <= max_len:
        return single_line
    return single_line[:max_len] + ELLIPSIS


def size_str(size: int) -> str:
    units = ("B", "KiB", "MiB")
    value = float(size)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{value:.0f} {units[i]}"


def get_image_dimensions(data: bytes) -> tuple[int, int]:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError):
        return (0, 0)


def preview_entry(data: bytes, mime: str | None, width: int) -> str:
    """Render a single-line preview of an entry, at most ``width`` characters plus a marker."""
    if mime and mime.startswith("image/"):
        w, h = get_image_dimensions(data)
        dims = f" {w}x{h}" if w > 0 else ""
        return f"[[ binary data {size_str(len(data))} {mime}{dims} ]]"
    if mime and (mime.startswith("text/") or mime == "application/json"):
        try:
            return truncate_text(data.decode("utf-8"), width)
        except UnicodeDecodeError:
            pass
    return truncate_text(data.decode("utf-8", errors="replace"), width)


def extract_id(line: str) -> int:
    """Return the id held in the first tab-delimited field of ``line``."""
    field = line.split("\t", 1)[0].strip()
    try:
        value = int(field)
    except ValueError:
        raise InvalidIdError(f"invalid id: {field!r}") from None
    if value < 0:
        raise InvalidIdError(f"invalid id: {field!r}")
    return value


def ensure_dirs() -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
