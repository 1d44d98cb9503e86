"""Receipt image preprocessing using Pillow, PyMuPDF and pdf2image"""
import io
import base64
import logging
from typing import Optional
import fitz  # PyMuPDF
from pdf2image import convert_from_bytes
from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import OcrUnavailable


logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = [
    "application/pdf",
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/gif",
    "image/webp",
    "image/bmp",
]


def detect_file_type(file_bytes: bytes, filename: str) -> str:
    """Detect if file is PDF or image"""
    if filename.lower().endswith(('.pdf',)):
        return 'pdf'
    elif filename.lower().endswith(('.png', '.jpg', '.jpeg', '.gif', '.bmp', '.webp')):
        return 'image'
    else:
        # Check magic bytes
        if file_bytes.startswith(b'%PDF'):
            return 'pdf'
        elif file_bytes.startswith(b'\x89PNG'):
            return 'image'
        elif file_bytes.startswith(b'\xff\xd8\xff'):
            return 'image'
        elif file_bytes.startswith((b'GIF87a', b'GIF89a')):
            return 'image'
        elif file_bytes[:4] == b'RIFF' and file_bytes[8:12] == b'WEBP':
            return 'image'
        elif file_bytes.startswith(b'BM'):
            return 'image'
    return 'unknown'


def extract_text_layer(pdf_bytes: bytes) -> str:
    """Return the embedded text of the first PDF page, or an empty string"""
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as e:
        raise OcrUnavailable(f"Failed to open PDF: {e}")
    try:
        if len(doc) == 0:
            return ""
        return doc[0].get_text().strip()
    finally:
        doc.close()


def pdf_to_image(pdf_bytes: bytes, dpi: int = 200) -> Image.Image:
    """Render the first PDF page to a PIL Image"""
    try:
        images = convert_from_bytes(pdf_bytes, dpi=dpi, first_page=1, last_page=1)
    except Exception as e:
        raise OcrUnavailable(f"Failed to convert PDF to image: {e}")
    if not images:
        raise OcrUnavailable("PDF has no pages")
    return images[0]


def load_image(file_bytes: bytes, filename: str = "") -> Image.Image:
    """Decode an uploaded receipt (image or PDF) into a PIL Image"""
    file_type = detect_file_type(file_bytes, filename)
    if file_type == "pdf":
        return pdf_to_image(file_bytes)

    try:
        image = Image.open(io.BytesIO(file_bytes))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise OcrUnavailable(f"Unsupported or corrupt image: {e}")

    # Phone cameras store orientation in EXIF rather than rotating pixels
    return ImageOps.exif_transpose(image)


def _resize_to_width(image: Image.Image, width: int) -> Image.Image:
    if image.width <= width:
        return image
    height = max(1, round(image.height * width / image.width))
    return image.resize((width, height), Image.Resampling.LANCZOS)


def _encode_jpeg(image: Image.Image, quality: int) -> bytes:
    if image.mode != "RGB":
        image = image.convert("RGB")
    buffered = io.BytesIO()
    image.save(buffered, format="JPEG", quality=quality, optimize=True)
    return buffered.getvalue()


def normalize_image(image: Image.Image, target_width: int = 1000, quality: int = 80) -> bytes:
    """Resize to at most ``target_width`` pixels wide and re-encode as JPEG.

    Bounds recognition latency and memory regardless of the camera resolution.
    """
    return _encode_jpeg(_resize_to_width(image, target_width), quality)


def make_thumbnail(image: Image.Image, width: int = 100, quality: int = 80) -> bytes:
    """Small JPEG preview for document lists"""
    return _encode_jpeg(_resize_to_width(image, width), quality)


def image_to_base64(image_bytes: bytes) -> str:
    """Convert encoded image bytes to a base64 string"""
    return base64.b64encode(image_bytes).decode("utf-8")


def preprocess(
    file_bytes: bytes,
    filename: str,
    target_width: int = 1000,
    thumbnail_width: int = 100,
    quality: int = 80
) -> dict:
    """
    Prepare an uploaded receipt for recognition and storage

    Args:
        file_bytes: Raw upload bytes
        filename: Original filename (used for type detection)
        target_width: Maximum width of the normalized image
        thumbnail_width: Width of the thumbnail
        quality: JPEG quality for both outputs

    Returns:
        Dict with normalized JPEG bytes, thumbnail bytes and any PDF text layer
    """
    file_type = detect_file_type(file_bytes, filename)
    if file_type == "unknown":
        raise OcrUnavailable(f"Unsupported file: {filename}")

    text_layer: Optional[str] = None
    if file_type == "pdf":
        text_layer = extract_text_layer(file_bytes) or None

    image = load_image(file_bytes, filename)
    result = {
        "file_type": file_type,
        "image": normalize_image(image, target_width, quality),
        "thumbnail": make_thumbnail(image, thumbnail_width, quality),
        "text_layer": text_layer,
    }
    logger.info(
        "Preprocessed %s (%s): %dx%d -> %d bytes",
        filename, file_type, image.width, image.height, len(result["image"])
    )
    return result