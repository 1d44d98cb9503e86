"""DuckDB persistence for receipt documents"""
import csv
import io
import duckdb
from decimal import Decimal
from typing import Optional, List, Dict, Any, Tuple


COLUMNS = [
    "id", "title", "vendor", "category", "notes", "amount", "date", "status",
    "transaction_type", "user_id", "user_name", "user_role",
    "image_ref", "thumbnail_ref", "created_at", "updated_at",
]

# Column name -> Document field name
FIELD_NAMES = {
    "transaction_type": "transactionType",
    "user_id": "userId",
    "user_name": "userName",
    "user_role": "userRole",
    "image_ref": "imageRef",
    "thumbnail_ref": "thumbnailRef",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}

# Content fields an edit may touch; status, ownership and refs are excluded
EDITABLE_COLUMNS = {
    "title": "title",
    "vendor": "vendor",
    "category": "category",
    "notes": "notes",
    "amount": "amount",
    "date": "date",
    "transactionType": "transaction_type",
}

_SELECT = ", ".join(COLUMNS)


def init_database(db_path: str) -> duckdb.DuckDBPyConnection:
    """Initialize database and create tables if they don't exist"""
    conn = duckdb.connect(db_path)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS documents (
            id VARCHAR PRIMARY KEY,
            title VARCHAR,
            vendor VARCHAR,
            category VARCHAR,
            notes TEXT,
            amount DECIMAL(15,2) NOT NULL CHECK (amount >= 0),
            date DATE NOT NULL,
            status VARCHAR NOT NULL,
            transaction_type VARCHAR,
            user_id VARCHAR NOT NULL,
            user_name VARCHAR,
            user_role VARCHAR NOT NULL,
            image_ref VARCHAR,
            thumbnail_ref VARCHAR,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP
        )
    """)

    # Visibility filter for employees
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_documents_user_id ON documents(user_id)
    """)

    # Recent-documents ordering
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_documents_created_at ON documents(created_at)
    """)

    return conn


def _row_to_dict(row: tuple) -> Dict[str, Any]:
    record = {}
    for column, value in zip(COLUMNS, row):
        if isinstance(value, Decimal):
            value = float(value)
        record[FIELD_NAMES.get(column, column)] = value
    return record


def save_document(conn: duckdb.DuckDBPyConnection, document: Dict[str, Any]) -> str:
    """Insert a new document record keyed by ``document['id']``"""
    conn.execute(f"""
        INSERT INTO documents ({_SELECT})
        VALUES ({", ".join(["?"] * len(COLUMNS))})
    """, [document.get(FIELD_NAMES.get(column, column)) for column in COLUMNS])
    return document["id"]


def get_document(conn: duckdb.DuckDBPyConnection, document_id: str) -> Optional[Dict[str, Any]]:
    """Get document by ID"""
    result = conn.execute(f"""
        SELECT {_SELECT} FROM documents WHERE id = ?
    """, [document_id]).fetchone()

    if not result:
        return None
    return _row_to_dict(result)


def update_fields(
    conn: duckdb.DuckDBPyConnection,
    document_id: str,
    changes: Dict[str, Any],
    updated_at
) -> None:
    """Apply content-field changes in a single statement"""
    assignments = []
    params = []
    for field, value in changes.items():
        if field not in EDITABLE_COLUMNS:
            raise KeyError(f"Field is not editable: {field}")
        assignments.append(f"{EDITABLE_COLUMNS[field]} = ?")
        params.append(value)

    assignments.append("updated_at = ?")
    params.extend([updated_at, document_id])
    conn.execute(f"""
        UPDATE documents SET {", ".join(assignments)} WHERE id = ?
    """, params)


def update_status(
    conn: duckdb.DuckDBPyConnection,
    document_id: str,
    status: str,
    expected_status: str,
    updated_at
) -> None:
    """Move a document from ``expected_status`` to ``status``"""
    conn.execute("""
        UPDATE documents SET status = ?, updated_at = ?
        WHERE id = ? AND status = ?
    """, [status, updated_at, document_id, expected_status])


def delete_document(conn: duckdb.DuckDBPyConnection, document_id: str) -> None:
    conn.execute("DELETE FROM documents WHERE id = ?", [document_id])


def _where(
    owner_id: Optional[str] = None,
    search: Optional[str] = None,
    status: Optional[str] = None,
    transaction_type: Optional[str] = None,
    date_from=None,
    date_to=None
) -> Tuple[str, List[Any]]:
    conditions = []
    params: List[Any] = []

    # Visibility first; every other filter narrows within it
    if owner_id is not None:
        conditions.append("user_id = ?")
        params.append(owner_id)
    if search:
        needle = search.lower()
        conditions.append("""(
            contains(lower(coalesce(title, '')), ?)
            OR contains(lower(coalesce(vendor, '')), ?)
            OR contains(lower(coalesce(category, '')), ?)
        )""")
        params.extend([needle, needle, needle])
    if status:
        conditions.append("status = ?")
        params.append(status)
    if transaction_type:
        conditions.append("transaction_type = ?")
        params.append(transaction_type)
    if date_from:
        conditions.append("date >= ?")
        params.append(date_from)
    if date_to:
        conditions.append("date <= ?")
        params.append(date_to)

    where_clause = " AND ".join(conditions) if conditions else "1=1"
    return where_clause, params


def list_documents(
    conn: duckdb.DuckDBPyConnection,
    owner_id: Optional[str] = None,
    search: Optional[str] = None,
    status: Optional[str] = None,
    transaction_type: Optional[str] = None,
    date_from=None,
    date_to=None,
    offset: int = 0,
    limit: Optional[int] = None
) -> Tuple[List[Dict[str, Any]], int]:
    """List documents with filters and pagination, newest first.

    ``owner_id`` restricts the set to one user's documents and is applied
    before the text, status and date filters.
    """
    where_clause, params = _where(
        owner_id, search, status, transaction_type, date_from, date_to
    )

    count_result = conn.execute(f"""
        SELECT COUNT(*) FROM documents WHERE {where_clause}
    """, params).fetchone()
    total = count_result[0] if count_result else 0

    query = f"""
        SELECT {_SELECT}
        FROM documents
        WHERE {where_clause}
        ORDER BY created_at DESC, id DESC
    """
    page_params = list(params)
    if limit is not None:
        query += " LIMIT ? OFFSET ?"
        page_params.extend([limit, offset])
    elif offset:
        query += " OFFSET ?"
        page_params.append(offset)

    results = conn.execute(query, page_params).fetchall()
    return [_row_to_dict(r) for r in results], total


def image_owner_ids(conn: duckdb.DuckDBPyConnection, reference: str) -> List[str]:
    """Owners of the documents that reference an image or thumbnail"""
    rows = conn.execute("""
        SELECT DISTINCT user_id FROM documents
        WHERE image_ref = ? OR thumbnail_ref = ?
    """, [reference, reference]).fetchall()
    return [row[0] for row in rows]


def count_by_status(conn: duckdb.DuckDBPyConnection, owner_id: Optional[str] = None) -> Dict[str, int]:
    where_clause, params = _where(owner_id)
    rows = conn.execute(f"""
        SELECT status, COUNT(*) FROM documents
        WHERE {where_clause}
        GROUP BY status
    """, params).fetchall()
    return {status: count for status, count in rows}


EXPORT_HEADER = [
    "id", "title", "vendor", "category", "amount", "date", "status",
    "transaction_type", "user_id", "user_name", "user_role", "notes", "created_at",
]


def export_to_csv(documents: List[Dict[str, Any]]) -> bytes:
    """Export document records to CSV format"""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_HEADER)
    for doc in documents:
        row = []
        for column in EXPORT_HEADER:
            value = doc.get(FIELD_NAMES.get(column, column))
            if hasattr(value, "value"):
                value = value.value
            if hasattr(value, "isoformat"):
                value = value.isoformat()
            row.append("" if value is None else value)
        writer.writerow(row)
    return buffer.getvalue().encode("utf-8")
