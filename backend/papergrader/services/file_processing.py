"""
Page image preparation: base64 decoding, orientation correction, PDF stacks.
"""

import io
import base64
import binascii
import re
from typing import List, Tuple

import fitz
from PIL import Image, ImageOps

from papergrader.config import logger
from papergrader.errors import GradingPipelineError

_DATA_URI_PREFIX = re.compile(r"^data:[^;,]*;base64,")


def decode_page_image(content_base64: str) -> bytes:
    """Decode a base64 page image, tolerating a data: URI prefix."""
    cleaned = _DATA_URI_PREFIX.sub("", content_base64.strip())
    try:
        return base64.b64decode(cleaned)
    except binascii.Error as e:
        raise GradingPipelineError(f"Page image is not valid base64: {e}", error_code="INVALID_PAGE_IMAGE")


def image_info(image_bytes: bytes) -> Tuple[str, int, int]:
    """Return (mime_type, width, height) of an image, without decoding pixel data."""
    with Image.open(io.BytesIO(image_bytes)) as img:
        mime = Image.MIME.get(img.format or "", "image/jpeg")
        width, height = img.size
    return mime, width, height


def correct_orientation(image_bytes: bytes) -> bytes:
    """
    Apply the EXIF orientation tag so pixel coordinates match the grading template.
    Phone photos are usually stored rotated with an orientation flag; the OCR
    provider and the ROIs both work in upright page pixels.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            orientation = img.getexif().get(0x0112, 1)
            if orientation == 1:
                return image_bytes
            upright = ImageOps.exif_transpose(img)
            fmt = img.format or "JPEG"
            buffer = io.BytesIO()
            upright.save(buffer, format=fmt)
        logger.info(f"Corrected page orientation (EXIF orientation {orientation})")
        return buffer.getvalue()
    except Exception as e:
        logger.error(f"Error in orientation correction: {e}")
        return image_bytes


def pdf_to_page_images(pdf_bytes: bytes, zoom: float = 2.0) -> List[bytes]:
    """Render every page of a scanned stack to JPEG bytes."""
    images = []
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        for page_num in range(len(doc)):
            pix = doc[page_num].get_pixmap(matrix=fitz.Matrix(zoom, zoom))
            images.append(pix.tobytes("jpeg"))
    finally:
        doc.close()
    logger.info(f"Converted PDF with {len(images)} pages to page images")
    return images
