"""Content classification and clipboard MIME negotiation."""

from clipstash.models import MimePreference

TEXT_PLAIN = "text/plain"
TEXT_HTML = "text/html"
URI_LIST = "text/uri-list"

_URI_SCHEMES = ("file://", "http://", "https://", "ftp://")

# (offset, signature, mime); checked in order
_SIGNATURES: list[tuple[int, bytes, str]] = [
    (0, b"\x89PNG\r\n\x1a\n", "image/png"),
    (0, b"\xff\xd8\xff", "image/jpeg"),
    (0, b"GIF87a", "image/gif"),
    (0, b"GIF89a", "image/gif"),
    (0, b"II*\x00", "image/tiff"),
    (0, b"MM\x00*", "image/tiff"),
    (0, b"\x00\x00\x01\x00", "image/x-icon"),
    (0, b"qoif", "image/qoi"),
    (0, b"8BPS\x00\x01", "image/vnd.adobe.photoshop"),
    (0, b"\xff\x0a", "image/jxl"),
    (0, b"\x00\x00\x00\x0cJXL \r\n\x87\n", "image/jxl"),
    (0, b"farbfeld", "image/farbfeld"),
    (0, b"\x76\x2f\x31\x01", "image/aces"),
    (0, b"#?RADIANCE", "image/vnd.radiance"),
    (0, b"DDS |\x00\x00\x00", "image/vnd.ms-dds"),
    (0, b"\xabKTX 20\xbb\r\n\x1a\n", "image/ktx2"),
]

# BITMAPINFOHEADER and friends; "BM" alone also starts plenty of ordinary text
_BMP_DIB_SIZES = {12, 40, 52, 56, 64, 108, 124}

_HEIF_BRANDS = {
    b"heic": "image/heic",
    b"heix": "image/heic",
    b"hevc": "image/heic",
    b"mif1": "image/heif",
    b"msf1": "image/heif",
    b"avif": "image/avif",
}


def _image_mime(data: bytes) -> str | None:
    for offset, signature, mime in _SIGNATURES:
        if data[offset:offset + len(signature)] == signature:
            return mime
    if data[:2] == b"BM" and len(data) >= 18 and int.from_bytes(data[14:18], "little") in _BMP_DIB_SIZES:
        return "image/bmp"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[4:8] == b"ftyp":
        return _HEIF_BRANDS.get(data[8:12])
    return None


def is_uri_list(text: str) -> bool:
    """Whether ``text`` looks like an RFC 2483 URI list (file manager copies)."""
    if not text:
        return False
    if not text.startswith(_URI_SCHEMES) and not text.startswith("#"):
        return False
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        return line.startswith(_URI_SCHEMES)
    return False


def detect_mime(data: bytes) -> str | None:
    if not data:
        return None

    image = _image_mime(data)
    if image:
        return image

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return None

    if is_uri_list(text.strip()):
        return URI_LIST
    return TEXT_PLAIN


def negotiate_mime(offered: list[str], preference: MimePreference | str) -> str | None:
    """Pick which of the ``offered`` clipboard types to read.

    ``text`` always asks for plain text. ``image`` takes the first image
    type, falling back to whatever is offered first. ``any`` prefers an
    image; otherwise a leading ``text/html`` is skipped for the first
    non-HTML alternative, since browsers and Electron apps advertise HTML
    ahead of the real payload.
    """
    preference = MimePreference(preference)
    if preference is MimePreference.TEXT:
        return TEXT_PLAIN
    if not offered:
        return None

    first_image = next((t for t in offered if t.startswith("image/")), None)
    if first_image:
        return first_image
    if preference is MimePreference.IMAGE:
        return offered[0]

    if offered[0] == TEXT_HTML:
        return next((t for t in offered if t != TEXT_HTML), TEXT_HTML)
    return offered[0]
