"""Document store: the single owner of document state.

All mutations run under one lock and are checked against the
authorization policy before anything is written, so concurrent approvals
of the same document cannot both observe ``pending``.
"""
import math
import uuid
import logging
import threading
from enum import Enum
from datetime import date, datetime, timezone
from typing import Optional, List, Dict, Any

from . import database
from .errors import ValidationError, NotFound, Forbidden, InvalidTransition
from .models import (
    Document,
    DocumentFields,
    DocumentFilters,
    DocumentStatus,
    DocumentUpdate,
    Identity,
    Role,
    StatusAction,
)
from .policy import can_approve, can_delete, can_edit, can_view, initial_status


logger = logging.getLogger(__name__)

_ACTION_TARGETS = {
    StatusAction.APPROVE: DocumentStatus.APPROVED,
    StatusAction.REJECT: DocumentStatus.REJECTED,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _plain(value):
    return value.value if isinstance(value, Enum) else value


# Upper bound of the DECIMAL(15,2) amount column
MAX_AMOUNT = 10 ** 13


def validate_amount(amount) -> None:
    if amount is None:
        raise ValidationError("Amount is required")
    if not math.isfinite(amount):
        raise ValidationError("Amount must be a finite number")
    if amount < 0:
        raise ValidationError("Amount must not be negative")
    if round(amount, 2) >= MAX_AMOUNT:
        raise ValidationError(f"Amount must be less than {MAX_AMOUNT:,}")


def validate_fields(fields: DocumentFields) -> None:
    """Reject submissions missing a title or with a missing or out-of-range amount"""
    if not fields.title or not fields.title.strip():
        raise ValidationError("Title is required")
    validate_amount(fields.amount)


class DocumentStore:
    """Encapsulated document collection backed by DuckDB"""

    def __init__(self, db_path: str):
        self._conn = database.init_database(db_path)
        self._lock = threading.Lock()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -- reads -------------------------------------------------------------

    def _load(self, document_id: str) -> Document:
        record = database.get_document(self._conn, document_id)
        if record is None:
            raise NotFound(f"Document not found: {document_id}")
        return Document(**record)

    def get(self, document_id: str, caller: Optional[Identity] = None) -> Document:
        """Fetch one document; with a caller, employees only see their own"""
        with self._lock:
            document = self._load(document_id)
        if caller is not None and not can_view(caller.role, document.userId == caller.userId):
            raise Forbidden("Not allowed to view this document")
        return document

    def list(
        self,
        caller_role: Role,
        caller_id: str,
        filters: Optional[DocumentFilters] = None
    ) -> List[Document]:
        return self.query(caller_role, caller_id, filters)[0]

    def query(
        self,
        caller_role: Role,
        caller_id: str,
        filters: Optional[DocumentFilters] = None
    ) -> tuple:
        """Visible documents matching ``filters`` plus the unpaginated total"""
        filters = filters or DocumentFilters()
        # Policy decides whether the caller sees other users' documents
        owner_id = None if can_view(caller_role, is_owner=False) else caller_id

        with self._lock:
            records, total = database.list_documents(
                self._conn,
                owner_id=owner_id,
                search=filters.search,
                status=_plain(filters.status),
                transaction_type=_plain(filters.transactionType),
                date_from=filters.dateFrom,
                date_to=filters.dateTo,
                offset=filters.offset,
                limit=filters.limit,
            )
        return [Document(**r) for r in records], total

    def recent(self, caller: Identity, limit: int = 5) -> List[Document]:
        return self.list(caller.role, caller.userId, DocumentFilters(limit=limit))

    def snapshot(self, caller: Optional[Identity] = None) -> List[Document]:
        """Point-in-time copy of the (visible) document set for reporting"""
        if caller is None:
            with self._lock:
                records, _ = database.list_documents(self._conn)
            return [Document(**r) for r in records]
        return self.list(caller.role, caller.userId)

    def check_image_access(self, reference: str, caller: Identity) -> None:
        """Images attached to documents share their documents' visibility.

        A reference no document holds yet is a draft from ``scan`` and is
        readable by whoever holds it.
        """
        with self._lock:
            owner_ids = database.image_owner_ids(self._conn, reference)
        if owner_ids and not any(can_view(caller.role, owner_id == caller.userId) for owner_id in owner_ids):
            logger.warning("Refused image %s for %s", reference, caller.userId)
            raise Forbidden("Not allowed to view this image")

    def count_by_status(self, caller: Identity) -> Dict[str, int]:
        owner_id = None if can_view(caller.role, is_owner=False) else caller.userId
        with self._lock:
            counts = database.count_by_status(self._conn, owner_id)
        return {status.value: counts.get(status.value, 0) for status in DocumentStatus}

    def export_csv(self, caller: Identity, filters: Optional[DocumentFilters] = None) -> bytes:
        documents = self.list(caller.role, caller.userId, filters)
        return database.export_to_csv([d.model_dump() for d in documents])

    # -- mutations ---------------------------------------------------------

    def submit(
        self,
        fields: DocumentFields,
        submitter: Identity,
        image_ref: Optional[str] = None,
        thumbnail_ref: Optional[str] = None
    ) -> Document:
        """Create a document; status is fixed here from the submitter's role"""
        validate_fields(fields)

        now = _utcnow()
        document = Document(
            id=str(uuid.uuid4()),
            title=fields.title.strip(),
            vendor=fields.vendor,
            category=fields.category,
            notes=fields.notes,
            amount=round(fields.amount, 2),
            date=fields.date or date.today(),
            status=initial_status(submitter.role),
            transactionType=fields.transactionType,
            userId=submitter.userId,
            userName=submitter.name,
            userRole=submitter.role,
            imageRef=image_ref,
            thumbnailRef=thumbnail_ref,
            createdAt=now,
            updatedAt=None,
        )
        record = {key: _plain(value) for key, value in document.model_dump().items()}

        with self._lock:
            database.save_document(self._conn, record)
        logger.info(
            "Submitted document %s by %s (%s) as %s",
            document.id, submitter.userId, submitter.role.value, document.status.value
        )
        return document

    def set_status(self, document_id: str, action: StatusAction, caller_role: Role) -> Document:
        """Approve or reject a pending document.

        Raises NotFound, then Forbidden (role), then InvalidTransition (status).
        """
        action = StatusAction(action)
        target = _ACTION_TARGETS[action]

        with self._lock:
            document = self._load(document_id)
            # Role check against a pending document isolates the role half
            if not can_approve(caller_role, DocumentStatus.PENDING):
                logger.warning("Refused %s on %s for role %s", action.value, document_id, caller_role)
                raise Forbidden(f"Role {Role(caller_role).value} may not {action.value} documents")
            if not can_approve(caller_role, document.status):
                logger.warning(
                    "Refused %s on %s: already %s", action.value, document_id, document.status.value
                )
                raise InvalidTransition(f"Document is already {document.status.value}")

            now = _utcnow()
            database.update_status(
                self._conn, document_id, target.value, DocumentStatus.PENDING.value, now
            )
            updated = self._load(document_id)

        logger.info("Document %s %s by %s", document_id, target.value, Role(caller_role).value)
        return updated

    def approve(self, document_id: str, caller_role: Role) -> Document:
        return self.set_status(document_id, StatusAction.APPROVE, caller_role)

    def reject(self, document_id: str, caller_role: Role) -> Document:
        return self.set_status(document_id, StatusAction.REJECT, caller_role)

    def edit(self, document_id: str, changes: DocumentUpdate, caller: Identity) -> Document:
        """Update content fields; status and ownership are untouched"""
        updates: Dict[str, Any] = changes.model_dump(exclude_unset=True)
        if "amount" in updates:
            validate_amount(updates["amount"])
            updates["amount"] = round(updates["amount"], 2)
        if "title" in updates and not (updates["title"] or "").strip():
            raise ValidationError("Title is required")
        if "date" in updates and updates["date"] is None:
            raise ValidationError("Date is required")

        with self._lock:
            document = self._load(document_id)
            if not can_edit(caller.role, document.userId == caller.userId):
                logger.warning("Refused edit on %s for %s", document_id, caller.userId)
                raise Forbidden("Not allowed to edit this document")
            if not updates:
                return document

            database.update_fields(
                self._conn,
                document_id,
                {field: _plain(value) for field, value in updates.items()},
                _utcnow()
            )
            updated = self._load(document_id)

        logger.info("Edited document %s (%s) by %s", document_id, ", ".join(sorted(updates)), caller.userId)
        return updated

    def delete(self, document_id: str, caller_role: Role, caller_id: str) -> None:
        with self._lock:
            document = self._load(document_id)
            if not can_delete(caller_role, document.userId == caller_id):
                logger.warning("Refused delete on %s for %s", document_id, caller_id)
                raise Forbidden("Only the owner or an admin may delete this document")
            database.delete_document(self._conn, document_id)
        logger.info("Deleted document %s by %s", document_id, caller_id)
