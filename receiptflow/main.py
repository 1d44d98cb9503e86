"""FastAPI backend for receipt capture and expense approval"""
import io
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional, List
from fastapi import FastAPI, UploadFile, File, Query, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse

from .auth import get_identity
from .config import Settings, settings
from .errors import ValidationError, NotFound, Forbidden, InvalidTransition, StorageError
from .ingestion import IngestionCoordinator
from .models import (
    Document,
    DocumentFields,
    DocumentFilters,
    DocumentStatus,
    DocumentUpdate,
    Identity,
    PeriodKind,
    Report,
    ReportPeriod,
    ScanDraft,
    StatusAction,
    TransactionType,
)
from .ocr import OcrEngine, build_recognizer
from .reports import generate_report
from .storage import LocalImageStorage
from .store import DocumentStore


logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s  %(name)-24s  %(levelname)-5s  %(message)s",
)
logger = logging.getLogger(__name__)

# Service singletons, created on startup (tests may install their own)
store: Optional[DocumentStore] = None
image_storage: Optional[LocalImageStorage] = None
coordinator: Optional[IngestionCoordinator] = None


def init_services(config: Settings) -> None:
    """Build the store, image storage and ingestion coordinator"""
    global store, image_storage, coordinator
    store = DocumentStore(config.DB_PATH)
    image_storage = LocalImageStorage(config.IMAGE_DIR, config.IMAGE_BASE_URL)
    ocr_engine = OcrEngine(
        build_recognizer(config),
        language=config.OCR_LANGUAGE,
        timeout=config.OCR_TIMEOUT_SECONDS,
        target_width=config.OCR_TARGET_WIDTH,
        quality=config.JPEG_QUALITY,
    )
    coordinator = IngestionCoordinator(
        store,
        ocr_engine,
        image_storage,
        max_upload_bytes=config.MAX_UPLOAD_BYTES,
        target_width=config.OCR_TARGET_WIDTH,
        thumbnail_width=config.THUMBNAIL_WIDTH,
        quality=config.JPEG_QUALITY,
    )


def shutdown_services() -> None:
    global store, image_storage, coordinator
    if store:
        store.close()
    store = image_storage = coordinator = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    if store is None:
        init_services(settings)
        logger.info("Database initialized at %s", settings.DB_PATH)
    yield
    shutdown_services()
    logger.info("Shutting down")


app = FastAPI(title="ReceiptFlow", version="0.1.0", lifespan=lifespan)

# CORS middleware for the mobile/web clients
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -- error mapping -----------------------------------------------------------

_ERROR_STATUS = {
    ValidationError: 400,
    Forbidden: 403,
    NotFound: 404,
    InvalidTransition: 409,
    StorageError: 502,
}


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception):
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc), "error": type(exc).__name__},
        )
    return handler


for _error, _status in _ERROR_STATUS.items():
    app.add_exception_handler(_error, _error_handler(_status))


# -- endpoints ---------------------------------------------------------------

@app.get("/api/health")
async def health_check():
    """Health check endpoint"""
    status = {
        "status": "ok",
        "tesseract_available": False,
        "ollama_available": False,
        "gemini_configured": bool(settings.GEMINI_API_KEY),
    }

    try:
        import pytesseract
        pytesseract.get_tesseract_version()
        status["tesseract_available"] = True
    except Exception:
        logger.debug("Tesseract not available", exc_info=True)

    try:
        import ollama
        models = ollama.list()
        status["ollama_available"] = any(
            settings.OLLAMA_MODEL in (model.get("model") or model.get("name") or "")
            for model in models.get("models", [])
        )
    except Exception:
        logger.debug("Ollama not reachable", exc_info=True)

    return status


@app.post("/api/scan", response_model=ScanDraft)
async def scan_endpoint(
    file: UploadFile = File(...),
    identity: Identity = Depends(get_identity)
):
    """Preprocess and OCR a receipt; returns an editable draft, stores nothing"""
    file_bytes = await file.read()
    logger.info("Scan by %s: %s (%d bytes)", identity.userId, file.filename, len(file_bytes))
    return await coordinator.scan(file_bytes, file.filename or "", file.content_type)


class SubmitRequest(DocumentFields):
    imageRef: Optional[str] = None
    thumbnailRef: Optional[str] = None


@app.post("/api/documents", response_model=Document, status_code=201)
async def submit_endpoint(
    req: SubmitRequest,
    identity: Identity = Depends(get_identity)
):
    """Submit a confirmed receipt"""
    fields = DocumentFields(**req.model_dump(exclude={"imageRef", "thumbnailRef"}))
    return coordinator.submit(fields, identity, req.imageRef, req.thumbnailRef)


def _filters(
    search: Optional[str] = Query(None, description="Matches title, vendor or category"),
    status: Optional[DocumentStatus] = Query(None),
    transaction_type: Optional[TransactionType] = Query(None),
    date_from: Optional[date] = Query(None, description="Start date (YYYY-MM-DD)"),
    date_to: Optional[date] = Query(None, description="End date (YYYY-MM-DD)"),
    offset: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=1000)
) -> DocumentFilters:
    return DocumentFilters(
        search=search,
        status=status,
        transactionType=transaction_type,
        dateFrom=date_from,
        dateTo=date_to,
        offset=offset,
        limit=limit,
    )


@app.get("/api/documents")
async def list_documents_endpoint(
    filters: DocumentFilters = Depends(_filters),
    identity: Identity = Depends(get_identity)
):
    """List visible documents with filters and pagination"""
    documents, total = store.query(identity.role, identity.userId, filters)
    return {
        "documents": documents,
        "total": total,
        "offset": filters.offset,
        "limit": filters.limit,
    }


@app.get("/api/documents/recent", response_model=List[Document])
async def recent_documents_endpoint(
    limit: int = Query(5, ge=1, le=100),
    identity: Identity = Depends(get_identity)
):
    return store.recent(identity, limit)


@app.get("/api/documents/stats")
async def document_stats_endpoint(identity: Identity = Depends(get_identity)):
    """Document counts per status for the caller's dashboard"""
    return store.count_by_status(identity)


@app.get("/api/documents/export")
async def export_documents_endpoint(
    filters: DocumentFilters = Depends(_filters),
    identity: Identity = Depends(get_identity)
):
    """Export visible documents to CSV"""
    csv_bytes = store.export_csv(identity, filters)
    return StreamingResponse(
        io.BytesIO(csv_bytes),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=documents.csv"}
    )


@app.get("/api/documents/{document_id}", response_model=Document)
async def get_document_endpoint(document_id: str, identity: Identity = Depends(get_identity)):
    """Get single document by ID"""
    return store.get(document_id, identity)


@app.patch("/api/documents/{document_id}", response_model=Document)
async def edit_document_endpoint(
    document_id: str,
    changes: DocumentUpdate,
    identity: Identity = Depends(get_identity)
):
    return store.edit(document_id, changes, identity)


@app.post("/api/documents/{document_id}/{action}", response_model=Document)
async def set_status_endpoint(
    document_id: str,
    action: StatusAction,
    identity: Identity = Depends(get_identity)
):
    """Approve or reject a pending document"""
    return store.set_status(document_id, action, identity.role)


@app.delete("/api/documents/{document_id}")
async def delete_document_endpoint(document_id: str, identity: Identity = Depends(get_identity)):
    store.delete(document_id, identity.role, identity.userId)
    return {"message": "Document deleted successfully", "id": document_id}


@app.get("/api/reports", response_model=Report)
async def report_endpoint(
    period_kind: PeriodKind = Query(PeriodKind.MONTHLY),
    period: ReportPeriod = Query(ReportPeriod.CURRENT),
    as_of: Optional[date] = Query(None, description="Reference date (YYYY-MM-DD)"),
    status: Optional[List[DocumentStatus]] = Query(None),
    transaction_type: Optional[TransactionType] = Query(None),
    identity: Identity = Depends(get_identity)
):
    """Generate a period report over the caller's visible documents.

    Only approved documents count unless ``status`` names other statuses.
    """
    documents = store.snapshot(identity)
    return generate_report(
        period_kind,
        period,
        documents,
        as_of=as_of,
        statuses=status or [DocumentStatus.APPROVED],
        transaction_type=transaction_type,
    )


@app.get("/api/images/{reference}")
async def image_endpoint(reference: str, identity: Identity = Depends(get_identity)):
    """Serve a stored receipt image or thumbnail"""
    store.check_image_access(reference, identity)
    data = image_storage.read(reference)
    return Response(content=data, media_type="image/jpeg")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
