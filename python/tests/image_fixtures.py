"""Binary fixtures for attachment tests.

Images are generated with Pillow so they always decode. PDFs are built
byte-by-byte (with a computed xref table) or with pypdf's writer.
"""

import io

from PIL import Image
from pypdf import PdfWriter


def make_image(
    size: tuple[int, int] = (1, 1),
    fmt: str = "PNG",
    mode: str = "RGB",
    color: tuple | str = "white",
) -> bytes:
    img = Image.new(mode, size, color=color)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


TINY_PNG = make_image()
TINY_JPEG = make_image(fmt="JPEG")
TINY_GIF = make_image(fmt="GIF")
TRANSPARENT_PNG = make_image((40, 30), mode="RGBA", color=(255, 0, 0, 0))
WIDE_PNG = make_image((4000, 1000), color="blue")


def make_text_pdf(text: str = "Quarterly report body") -> bytes:
    """One-page PDF with a Helvetica text layer."""
    content = f"BT /F1 24 Tf 72 700 Td ({text}) Tj ET".encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792]"
        b" /Resources << /Font << /F1 4 0 R >> >> /Contents 5 0 R >>",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
        b"<< /Length %d >>\nstream\n" % len(content) + content + b"\nendstream",
    ]

    out = io.BytesIO()
    out.write(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(out.tell())
        out.write(b"%d 0 obj\n" % number + body + b"\nendobj\n")

    xref_at = out.tell()
    out.write(b"xref\n0 %d\n" % (len(objects) + 1))
    out.write(b"0000000000 65535 f \n")
    for offset in offsets:
        out.write(b"%010d 00000 n \n" % offset)
    out.write(
        b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n"
        % (len(objects) + 1, xref_at)
    )
    return out.getvalue()


def make_blank_pdf(pages: int = 2) -> bytes:
    """PDF with empty pages (no text layer)."""
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=612, height=792)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


TEXT_PDF = make_text_pdf()
BLANK_PDF = make_blank_pdf()

# Starts like a PDF, parses as nothing
CORRUPT_PDF = b"%PDF-1.4\nthis is not really a pdf\n"
