"""Pure byte-level transformations for attachments.

- compress_image: re-encode to JPEG bounded to 1920x1920, quality 85
- make_thumbnail: 200x200 center crop, JPEG quality 80
- extract_pdf_text: plain text + page count via pypdf
- decode_text: UTF-8 text documents

Everything here is synchronous and CPU-bound; async callers run these in
a threadpool. No storage or database access.
"""

import io
import warnings
from dataclasses import dataclass

from PIL import Image, ImageOps
from pypdf import PdfReader

from doggo.errors import ApiErrorCode, InvalidRequestError

MAX_IMAGE_DIMENSION = 1920
IMAGE_QUALITY = 85
THUMBNAIL_SIZE = (200, 200)
THUMBNAIL_QUALITY = 80

# Decoded pixel ceiling; anything larger is treated as a decompression bomb
MAX_SOURCE_PIXELS = 100_000_000
Image.MAX_IMAGE_PIXELS = MAX_SOURCE_PIXELS

IMAGE_CONTENT_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})
PDF_CONTENT_TYPE = "application/pdf"
TEXT_CONTENT_TYPES = frozenset({"text/plain", "text/markdown"})

# Magic bytes for content sniffing
MAGIC_BYTES = {
    "image/jpeg": (b"\xff\xd8\xff",),
    "image/png": (b"\x89PNG\r\n\x1a\n",),
    "image/gif": (b"GIF87a", b"GIF89a"),
    "application/pdf": (b"%PDF-",),
}


class PdfExtractionError(Exception):
    """Raised when a PDF cannot be parsed."""


@dataclass(frozen=True)
class ProcessedImage:
    data: bytes
    width: int
    height: int
    content_type: str = "image/jpeg"


@dataclass(frozen=True)
class PdfText:
    text: str
    page_count: int


def sniff_matches(content_type: str, data: bytes) -> bool:
    """Check the leading bytes agree with the declared type.

    WebP is RIFF-based and checked separately; text types are not sniffed.
    """
    if content_type == "image/webp":
        return data[:4] == b"RIFF" and data[8:12] == b"WEBP"
    prefixes = MAGIC_BYTES.get(content_type)
    if prefixes is None:
        return True
    return data.startswith(prefixes)


def _open_image(data: bytes) -> Image.Image:
    """Open and fully validate an image, rejecting decompression bombs.

    Raises:
        InvalidRequestError: If the bytes are not a decodable image.
    """
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", Image.DecompressionBombWarning)
            img = Image.open(io.BytesIO(data))
            img.verify()

            # verify() leaves the image unusable
            img = Image.open(io.BytesIO(data))
            img.load()
    except (Image.DecompressionBombWarning, Image.DecompressionBombError) as e:
        raise InvalidRequestError(
            ApiErrorCode.E_FILE_TOO_LARGE, "Image exceeds dimension limits"
        ) from e
    except Exception as e:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_CONTENT_TYPE, "Content is not a valid image"
        ) from e
    return img


def _to_rgb(img: Image.Image) -> Image.Image:
    """Flatten to RGB for JPEG; transparent areas become white."""
    if img.mode == "RGB":
        return img
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return img.convert("RGB")


def _encode_jpeg(img: Image.Image, quality: int) -> bytes:
    out = io.BytesIO()
    img.save(out, format="JPEG", quality=quality, optimize=True)
    return out.getvalue()


def _prepare(data: bytes) -> Image.Image:
    img = _open_image(data)
    # Animated GIF/WebP: only the first frame is kept
    img.seek(0)
    img = ImageOps.exif_transpose(img)
    return _to_rgb(img)


def compress_image(data: bytes) -> ProcessedImage:
    """Re-encode an image as JPEG inside a 1920x1920 box.

    Aspect ratio is preserved and images already inside the box are never
    upscaled.

    Raises:
        InvalidRequestError: If the bytes are not a valid image.
    """
    img = _prepare(data)
    img.thumbnail((MAX_IMAGE_DIMENSION, MAX_IMAGE_DIMENSION), Image.Resampling.LANCZOS)
    width, height = img.size
    return ProcessedImage(data=_encode_jpeg(img, IMAGE_QUALITY), width=width, height=height)


def make_thumbnail(data: bytes) -> bytes:
    """Square 200x200 JPEG thumbnail, cropped around the center."""
    img = _prepare(data)
    thumb = ImageOps.fit(
        img, THUMBNAIL_SIZE, method=Image.Resampling.LANCZOS, centering=(0.5, 0.5)
    )
    return _encode_jpeg(thumb, THUMBNAIL_QUALITY)


def extract_pdf_text(data: bytes) -> PdfText:
    """Extract plain text from every page.

    Pages without a text layer contribute nothing; the result may be empty.

    Raises:
        PdfExtractionError: If the PDF cannot be parsed.
    """
    try:
        reader = PdfReader(io.BytesIO(data))
        if reader.is_encrypted:
            reader.decrypt("")
        pages = [page.extract_text() or "" for page in reader.pages]
    except Exception as e:
        raise PdfExtractionError(f"PDF parse failed: {type(e).__name__}") from e

    text = "\n\n".join(p.strip() for p in pages if p.strip())
    return PdfText(text=text, page_count=len(pages))


def decode_text(data: bytes) -> str:
    """Decode a text document; undecodable bytes are replaced, a BOM is dropped."""
    return data.decode("utf-8-sig", errors="replace")
