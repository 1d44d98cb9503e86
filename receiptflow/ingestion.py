"""Upload/ingestion coordinator: preprocess -> OCR -> draft -> submission"""
import asyncio
import logging
from datetime import date
from typing import Optional

from .errors import OcrUnavailable, ValidationError
from .image_processing import ALLOWED_CONTENT_TYPES, preprocess
from .models import DocumentFields, ExtractionResult, Identity, Role, ScanDraft
from .ocr import OcrEngine, parse_receipt_text
from .storage import LocalImageStorage
from .store import DocumentStore, validate_fields


logger = logging.getLogger(__name__)


def draft_fields(extraction: ExtractionResult) -> DocumentFields:
    """Pre-fill the editable form from an OCR draft"""
    draft_date = None
    if extraction.date:
        try:
            draft_date = date.fromisoformat(extraction.date)
        except ValueError:
            draft_date = None

    return DocumentFields(
        title=f"Receipt from {extraction.vendor or 'Unknown'}",
        vendor=extraction.vendor,
        amount=extraction.amount,
        date=draft_date,
    )


class IngestionCoordinator:
    """Orchestrates a receipt from upload to submitted document.

    ``scan`` never writes to the document store, so cancelling it (the user
    navigates away or resets the form) leaves no partial record behind.
    """

    def __init__(
        self,
        store: DocumentStore,
        ocr_engine: OcrEngine,
        image_storage: LocalImageStorage,
        max_upload_bytes: int = 10 * 1024 * 1024,
        target_width: int = 1000,
        thumbnail_width: int = 100,
        quality: int = 80
    ):
        self.store = store
        self.ocr_engine = ocr_engine
        self.image_storage = image_storage
        self.max_upload_bytes = max_upload_bytes
        self.target_width = target_width
        self.thumbnail_width = thumbnail_width
        self.quality = quality

    def check_upload(self, file_bytes: bytes, content_type: Optional[str]) -> None:
        if content_type is not None and content_type not in ALLOWED_CONTENT_TYPES:
            raise ValidationError(f"Unsupported file type: {content_type}")
        if not file_bytes:
            raise ValidationError("Uploaded file is empty")
        if len(file_bytes) > self.max_upload_bytes:
            limit_mb = self.max_upload_bytes // (1024 * 1024)
            raise ValidationError(f"File size exceeds {limit_mb}MB limit")

    async def scan(
        self,
        file_bytes: bytes,
        filename: str,
        content_type: Optional[str] = None
    ) -> ScanDraft:
        """Preprocess and recognize a receipt, returning a form draft"""
        self.check_upload(file_bytes, content_type)

        try:
            prepared = await asyncio.to_thread(
                preprocess,
                file_bytes,
                filename,
                self.target_width,
                self.thumbnail_width,
                self.quality
            )
        except OcrUnavailable as e:
            # Undecodable upload: nothing stored, fall back to manual entry
            logger.warning("Could not read %s, falling back to manual entry: %s", filename, e)
            empty = ExtractionResult()
            return ScanDraft(extraction=empty, fields=draft_fields(empty), ocrAvailable=False)

        image_ref = await asyncio.to_thread(self.image_storage.store, prepared["image"], "jpg")
        thumbnail_ref = await asyncio.to_thread(self.image_storage.store, prepared["thumbnail"], "jpg")

        if prepared["text_layer"]:
            logger.info("Using embedded PDF text for %s", filename)
            extraction, ocr_available = parse_receipt_text(prepared["text_layer"]), True
        else:
            extraction, ocr_available = await self.ocr_engine.extract_or_empty(prepared["image"])

        return ScanDraft(
            extraction=extraction,
            fields=draft_fields(extraction),
            imageRef=image_ref,
            thumbnailRef=thumbnail_ref,
            ocrAvailable=ocr_available,
        )

    def submit(
        self,
        fields: DocumentFields,
        submitter: Identity,
        image_ref: Optional[str] = None,
        thumbnail_ref: Optional[str] = None
    ):
        """Validate confirmed fields and create the document"""
        validate_fields(fields)
        for reference in (image_ref, thumbnail_ref):
            if reference is not None and not self.image_storage.exists(reference):
                raise ValidationError(f"Unknown image reference: {reference}")
        return self.store.submit(fields, submitter, image_ref, thumbnail_ref)

    def submit_document(
        self,
        fields: DocumentFields,
        image_ref: Optional[str],
        submitter_role: Role,
        submitter_id: str,
        thumbnail_ref: Optional[str] = None,
        submitter_name: Optional[str] = None
    ) -> str:
        """Submit and return the new document id"""
        submitter = Identity(userId=submitter_id, role=submitter_role, name=submitter_name)
        return self.submit(fields, submitter, image_ref, thumbnail_ref).id
