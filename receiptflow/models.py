"""Pydantic models matching the mobile client's TypeScript types"""
from enum import Enum
from typing import Optional, List
import datetime as dt
from pydantic import BaseModel, Field


class Role(str, Enum):
    EMPLOYEE = "employee"
    ACCOUNTANT = "accountant"
    ADMIN = "admin"
    OWNER = "owner"


class DocumentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class StatusAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class PeriodKind(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class ReportPeriod(str, Enum):
    CURRENT = "current"
    PREVIOUS = "previous"


class Identity(BaseModel):
    """Session identity handed over by the identity provider"""
    userId: str
    role: Role
    name: Optional[str] = None


class DocumentFields(BaseModel):
    """User-confirmed fields submitted with a receipt"""
    title: Optional[str] = None
    vendor: Optional[str] = None
    category: Optional[str] = None
    notes: Optional[str] = None
    amount: Optional[float] = None
    date: Optional[dt.date] = None
    transactionType: Optional[TransactionType] = None


class DocumentUpdate(BaseModel):
    """Partial edit of content fields; status is never editable here"""
    title: Optional[str] = None
    vendor: Optional[str] = None
    category: Optional[str] = None
    notes: Optional[str] = None
    amount: Optional[float] = None
    date: Optional[dt.date] = None
    transactionType: Optional[TransactionType] = None


class Document(BaseModel):
    id: str
    title: Optional[str] = None
    vendor: Optional[str] = None
    category: Optional[str] = None
    notes: Optional[str] = None
    amount: float = Field(ge=0)
    date: dt.date
    status: DocumentStatus
    transactionType: Optional[TransactionType] = None
    userId: str
    userName: Optional[str] = None
    userRole: Role
    imageRef: Optional[str] = None
    thumbnailRef: Optional[str] = None
    createdAt: dt.datetime
    updatedAt: Optional[dt.datetime] = None


class DocumentFilters(BaseModel):
    search: Optional[str] = None
    status: Optional[DocumentStatus] = None
    transactionType: Optional[TransactionType] = None
    dateFrom: Optional[dt.date] = None
    dateTo: Optional[dt.date] = None
    offset: int = Field(0, ge=0)
    limit: Optional[int] = Field(None, ge=1)


class ExtractionResult(BaseModel):
    """Best-effort OCR draft; every field is independently nullable"""
    amount: Optional[float] = None
    date: Optional[str] = None
    vendor: Optional[str] = None
    rawText: str = ""
    lines: List[str] = []
    confidence: float = 0.0


class ScanDraft(BaseModel):
    """Pre-filled form returned to the user for confirmation"""
    extraction: ExtractionResult
    fields: DocumentFields
    imageRef: Optional[str] = None
    thumbnailRef: Optional[str] = None
    ocrAvailable: bool = True


class CategoryBreakdown(BaseModel):
    name: str
    amount: float
    percentageOfTotal: int


class Report(BaseModel):
    periodKind: PeriodKind
    period: ReportPeriod
    periodLabels: List[str] = []
    seriesTotals: List[float] = []
    categoryBreakdown: List[CategoryBreakdown] = []
    totalForPeriod: float = 0.0
    averagePerBucket: float = 0.0
    trendVsPriorPeriod: Optional[float] = None
    generatedAt: dt.datetime
