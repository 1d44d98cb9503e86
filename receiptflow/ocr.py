"""OCR extraction engine: recognition backends + regex field parsing"""
import io
import re
import asyncio
import logging
from datetime import date
from typing import Dict, Any, Optional, List, Protocol, Tuple
from PIL import Image
import ollama
import pytesseract
from google import genai

from .errors import OcrUnavailable
from .image_processing import load_image, normalize_image, image_to_base64
from .models import ExtractionResult


logger = logging.getLogger(__name__)


TRANSCRIBE_PROMPT = """
Transcribe all text printed on this receipt image.
Language hint: {language}

Rules:
1. Keep the original line breaks, one printed line per output line.
2. Do not summarize, translate or correct anything.
3. Output ONLY the transcribed text. Do not include markdown formatting.
"""


# ---------------------------------------------------------------------------
# Field parsing (pure, independent of image handling)
# ---------------------------------------------------------------------------

_MONEY = r"(\d{1,3}(?:,\d{3})+\.\d{2}|\d+\.\d{2})"
_DATE_SHAPE = r"(\d{4}-\d{1,2}-\d{1,2}|\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4})"

# Ordered pattern classes: the first class with a match wins, and within a
# class the earliest match in reading order wins.
AMOUNT_PATTERNS: List[re.Pattern] = [
    re.compile(r"\btotal\b[^\d\n]{0,20}?" + _MONEY, re.IGNORECASE),
    re.compile(r"\bamount\b[^\d\n]{0,20}?" + _MONEY, re.IGNORECASE),
    re.compile(r"\$\s*" + _MONEY),
]

DATE_PATTERNS: List[re.Pattern] = [
    re.compile(r"\bdate\b\s*:?\s*" + _DATE_SHAPE, re.IGNORECASE),
    re.compile(r"(?<![\d/\-.])" + _DATE_SHAPE + r"(?![\d/\-.]*\d)"),
]


def _first_match(patterns: List[re.Pattern], text: str) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def extract_amount(text: str) -> Optional[float]:
    """Labeled total, then labeled amount, then a bare dollar figure"""
    raw = _first_match(AMOUNT_PATTERNS, text)
    if raw is None:
        return None
    return float(raw.replace(",", ""))


def normalize_date(raw: str) -> Optional[str]:
    """Return ISO ``YYYY-MM-DD`` for a date-shaped string, or None if invalid.

    Slash/dot/dash dates are read month-first, then day-first when the
    month-first reading is impossible (e.g. ``25/12/2024``). Two-digit years
    map to 20xx.
    """
    parts = re.split(r"[/\-.]", raw)
    if len(parts) != 3:
        return None

    if len(parts[0]) == 4:
        candidates: List[Tuple[str, str, str]] = [(parts[0], parts[1], parts[2])]
    else:
        year = parts[2]
        if len(year) == 2:
            year = "20" + year
        elif len(year) != 4:
            return None
        candidates = [(year, parts[0], parts[1]), (year, parts[1], parts[0])]

    for year, month, day in candidates:
        try:
            return date(int(year), int(month), int(day)).isoformat()
        except ValueError:
            continue
    return None


def extract_date(text: str) -> Optional[str]:
    """Labeled date first, then the first bare date-shaped token"""
    raw = _first_match(DATE_PATTERNS, text)
    if raw is None:
        return None
    return normalize_date(raw) or raw


def extract_vendor(text: str) -> Optional[str]:
    """Guess the vendor as the first non-blank line (weakest signal)"""
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return None


def calculate_confidence(extracted: Dict[str, Any]) -> float:
    """Fraction of the three draft fields that were found"""
    required_fields = ["amount", "date", "vendor"]
    present_fields = sum(1 for field in required_fields if extracted.get(field) is not None)
    return round(present_fields / len(required_fields), 2)


def parse_receipt_text(text: str) -> ExtractionResult:
    """Apply the amount, date and vendor rules to recognized text.

    Each field is extracted independently; a failure in one leaves the
    others intact.
    """
    extracted: Dict[str, Any] = {}
    for field, extractor in (
        ("amount", extract_amount),
        ("date", extract_date),
        ("vendor", extract_vendor),
    ):
        try:
            extracted[field] = extractor(text)
        except (ValueError, OverflowError) as e:
            logger.warning("Could not extract %s: %s", field, e)
            extracted[field] = None

    return ExtractionResult(
        amount=extracted["amount"],
        date=extracted["date"],
        vendor=extracted["vendor"],
        rawText=text,
        lines=[line.strip() for line in text.splitlines() if line.strip()],
        confidence=calculate_confidence(extracted),
    )


# ---------------------------------------------------------------------------
# Recognition backends
# ---------------------------------------------------------------------------

class Recognizer(Protocol):
    name: str

    def recognize(self, image_bytes: bytes, language: str) -> str:
        ...


class TesseractRecognizer:
    """Local Tesseract via pytesseract"""
    name = "tesseract"

    def __init__(self, config: str = "--psm 6"):
        self.config = config

    def recognize(self, image_bytes: bytes, language: str) -> str:
        try:
            image = Image.open(io.BytesIO(image_bytes))
            return pytesseract.image_to_string(image, lang=language, config=self.config)
        except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError, OSError) as e:
            raise OcrUnavailable(f"Tesseract recognition failed: {e}")


class OllamaRecognizer:
    """Local vision model served by Ollama"""
    name = "ollama"

    def __init__(self, model: str = "qwen3-vl"):
        self.model = model

    def recognize(self, image_bytes: bytes, language: str) -> str:
        try:
            response = ollama.chat(
                model=self.model,
                messages=[{
                    "role": "user",
                    "content": TRANSCRIBE_PROMPT.format(language=language),
                    "images": [image_to_base64(image_bytes)]
                }]
            )
            return response["message"]["content"]
        except Exception as e:
            if "not found" in str(e).lower():
                raise OcrUnavailable(
                    f"Ollama model '{self.model}' not found. Please run: ollama pull {self.model}"
                )
            raise OcrUnavailable(f"Ollama recognition failed: {e}")


class GeminiRecognizer:
    """Hosted Gemini vision model"""
    name = "gemini"

    def __init__(self, api_key: Optional[str], model: str = "gemini-2.5-flash"):
        self.api_key = api_key
        self.model = model

    def recognize(self, image_bytes: bytes, language: str) -> str:
        if not self.api_key:
            raise OcrUnavailable("GEMINI_API_KEY not set")

        try:
            client = genai.Client(api_key=self.api_key)
            image = Image.open(io.BytesIO(image_bytes))
            response = client.models.generate_content(
                model=self.model,
                contents=[TRANSCRIBE_PROMPT.format(language=language), image]
            )
        except Exception as e:
            raise OcrUnavailable(f"Gemini recognition failed: {e}")

        if not response.text:
            raise OcrUnavailable("No response from Gemini")
        return response.text


class FallbackRecognizer:
    """Try each backend in order; the first non-empty transcription wins"""
    name = "fallback"

    def __init__(self, backends: List[Recognizer]):
        self.backends = backends

    def recognize(self, image_bytes: bytes, language: str) -> str:
        last_error: Optional[Exception] = None
        for backend in self.backends:
            try:
                text = backend.recognize(image_bytes, language)
            except OcrUnavailable as e:
                logger.warning("OCR backend %s failed: %s", backend.name, e)
                last_error = e
                continue
            if text and text.strip():
                logger.info("OCR backend %s recognized %d chars", backend.name, len(text))
                return text
            logger.warning("OCR backend %s returned no text", backend.name)

        if last_error is not None:
            raise OcrUnavailable(f"All recognition backends failed. Last error: {last_error}")
        raise OcrUnavailable("No text recognized")


def build_recognizer(settings) -> FallbackRecognizer:
    """Build the backend chain named by ``settings.OCR_BACKENDS``"""
    factories = {
        "tesseract": lambda: TesseractRecognizer(),
        "ollama": lambda: OllamaRecognizer(settings.OLLAMA_MODEL),
        "gemini": lambda: GeminiRecognizer(settings.GEMINI_API_KEY, settings.GEMINI_MODEL),
    }
    backends = []
    for name in settings.OCR_BACKENDS:
        if name not in factories:
            raise ValueError(f"Unknown OCR backend: {name}")
        backends.append(factories[name]())
    return FallbackRecognizer(backends)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class OcrEngine:
    """Turns receipt image bytes into an advisory ExtractionResult.

    Blocking work runs in worker threads so the awaiting caller can cancel
    (e.g. the user resets the form) without affecting any stored state.
    """

    def __init__(
        self,
        recognizer: Recognizer,
        language: str = "eng",
        timeout: float = 60.0,
        target_width: int = 1000,
        quality: int = 80
    ):
        self.recognizer = recognizer
        self.language = language
        self.timeout = timeout
        self.target_width = target_width
        self.quality = quality

    def _normalize(self, image_bytes: bytes) -> bytes:
        return normalize_image(load_image(image_bytes), self.target_width, self.quality)

    async def extract(self, image_bytes: bytes) -> ExtractionResult:
        """Raises OcrUnavailable on corrupt data, backend failure or timeout"""
        normalized = await asyncio.to_thread(self._normalize, image_bytes)
        try:
            text = await asyncio.wait_for(
                asyncio.to_thread(self.recognizer.recognize, normalized, self.language),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise OcrUnavailable(f"Recognition timed out after {self.timeout}s")
        return parse_receipt_text(text)

    async def extract_or_empty(self, image_bytes: bytes) -> Tuple[ExtractionResult, bool]:
        """Like ``extract`` but falls back to an all-null result.

        Returns ``(result, ocr_available)``.
        """
        try:
            return await self.extract(image_bytes), True
        except OcrUnavailable as e:
            logger.warning("OCR unavailable, falling back to manual entry: %s", e)
            return ExtractionResult(), False
