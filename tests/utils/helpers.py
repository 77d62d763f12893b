"""
Test Helpers
============

Helper functions for building ZPL documents and rendered artifacts.
"""

import io
import re
from typing import List, Tuple

import PIL.Image
from pypdf import PdfReader, PdfWriter

LABEL_NUMBER_RE = re.compile(r"\^FDLABEL(\d+)")


def zpl_label(number: int, extra: str = "") -> str:
    """One complete label whose field data identifies it."""
    return f"^XA^FO50,50^ADN,36,20^FDLABEL{number}^FS{extra}^XZ"


def zpl_document(*numbers: int, separator: str = "\n") -> str:
    """Labels in the given order; repeated numbers give identical labels."""
    return separator.join(zpl_label(n) for n in numbers)


def label_number(zpl: str) -> int:
    """Number of the first ``^FDLABEL<n>`` field in ``zpl``, 0 if none."""
    match = LABEL_NUMBER_RE.search(zpl)
    return int(match.group(1)) if match else 0


def make_pdf(width: float = 288, height: float = 432, pages: int = 1) -> bytes:
    """Blank PDF with ``pages`` pages of the given size in points."""
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=width, height=height)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def make_png(width: int = 812, height: int = 1218) -> bytes:
    """White grayscale PNG of the given pixel size."""
    buffer = io.BytesIO()
    PIL.Image.new("L", (width, height), color=255).save(buffer, format="PNG")
    return buffer.getvalue()


def pdf_page_sizes(data: bytes) -> List[Tuple[float, float]]:
    """(width, height) in points of every page, in order."""
    reader = PdfReader(io.BytesIO(data))
    return [(float(page.mediabox.width), float(page.mediabox.height)) for page in reader.pages]


def png_size(data: bytes) -> Tuple[int, int]:
    with PIL.Image.open(io.BytesIO(data)) as image:
        return image.size
