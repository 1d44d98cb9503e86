"""Pytest configuration and fixtures"""
import io
import shutil
import tempfile
from datetime import date
from pathlib import Path
import pytest
from PIL import Image, ImageDraw

from receiptflow.models import DocumentFields, Identity, Role
from receiptflow.ocr import OcrEngine
from receiptflow.storage import LocalImageStorage
from receiptflow.store import DocumentStore
from receiptflow.ingestion import IngestionCoordinator


@pytest.fixture
def temp_dir():
    """Scratch directory removed after the test"""
    path = tempfile.mkdtemp()
    try:
        yield Path(path)
    finally:
        shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def store(temp_dir):
    """Document store backed by a temporary DuckDB file"""
    document_store = DocumentStore(str(temp_dir / "test_documents.duckdb"))
    try:
        yield document_store
    finally:
        document_store.close()


@pytest.fixture
def image_storage(temp_dir):
    return LocalImageStorage(str(temp_dir / "images"))


class StubRecognizer:
    """Recognition backend returning canned text"""
    name = "stub"

    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def recognize(self, image_bytes, language):
        self.calls.append((image_bytes, language))
        if self.error:
            raise self.error
        return self.text


@pytest.fixture
def stub_recognizer():
    return StubRecognizer(SAMPLE_RECEIPT_TEXT)


@pytest.fixture
def coordinator(store, image_storage, stub_recognizer):
    return IngestionCoordinator(store, OcrEngine(stub_recognizer, timeout=5), image_storage)


SAMPLE_RECEIPT_TEXT = """
STAPLES
123 Main Street
Date: 03/01/2024

Paper          12.50
Pens           30.00
Subtotal:      42.50
Total:        $42.50
Thank you!
"""


@pytest.fixture
def employee():
    return Identity(userId="emp-1", role=Role.EMPLOYEE, name="John Doe")


@pytest.fixture
def other_employee():
    return Identity(userId="emp-2", role=Role.EMPLOYEE, name="Jane Roe")


@pytest.fixture
def accountant():
    return Identity(userId="acc-1", role=Role.ACCOUNTANT, name="Alice Books")


@pytest.fixture
def admin():
    return Identity(userId="adm-1", role=Role.ADMIN, name="Sam Admin")


@pytest.fixture
def owner():
    return Identity(userId="own-1", role=Role.OWNER, name="Olivia Owner")


@pytest.fixture
def sample_fields():
    """Confirmed fields for the Staples receipt"""
    return DocumentFields(
        title="Office Supplies Receipt",
        vendor="Staples",
        category="Office Supplies",
        amount=42.50,
        date=date(2024, 3, 1),
    )


@pytest.fixture
def sample_image_bytes():
    """A wide PNG receipt photo, larger than the OCR target width"""
    image = Image.new("RGB", (2400, 1200), "white")
    draw = ImageDraw.Draw(image)
    draw.text((100, 100), "STAPLES", fill="black")
    draw.text((100, 200), "Total: $42.50", fill="black")
    buffered = io.BytesIO()
    image.save(buffered, format="PNG")
    return buffered.getvalue()


@pytest.fixture
def sample_pdf_bytes():
    """Create a minimal PDF for testing"""
    # Minimal valid PDF structure
    pdf_content = b"""%PDF-1.4
1 0 obj
<< /Type /Catalog /Pages 2 0 R >>
endobj
2 0 obj
<< /Type /Pages /Kids [3 0 R] /Count 1 >>
endobj
3 0 obj
<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>
endobj
xref
0 4
0000000000 65535 f 
0000000009 00000 n 
0000000058 00000 n 
0000000115 00000 n 
trailer
<< /Size 4 /Root 1 0 R >>
startxref
179
%%EOF"""
    return pdf_content


def _headers_for(identity):
    headers = {"X-User-Id": identity.userId, "X-User-Role": identity.role.value}
    if identity.name:
        headers["X-User-Name"] = identity.name
    return headers


@pytest.fixture
def auth_headers():
    """Identity headers as set by the upstream auth proxy"""
    return _headers_for


@pytest.fixture
def client(temp_dir, stub_recognizer):
    """TestClient with services pointed at temporary storage"""
    from fastapi.testclient import TestClient
    import receiptflow.main as main
    from receiptflow.config import Settings

    config = Settings(
        DB_PATH=str(temp_dir / "api.duckdb"),
        IMAGE_DIR=str(temp_dir / "api-images"),
        OCR_BACKENDS=[],
    )
    main.init_services(config)
    main.coordinator.ocr_engine.recognizer = stub_recognizer
    try:
        with TestClient(main.app) as test_client:
            yield test_client
    finally:
        main.shutdown_services()
