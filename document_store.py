"""
document_store.py
-----------------
HealthCloud Clinical Backend: Document Store
--------------------------------------------
SQLite-backed, collection-scoped document database. Each document is a JSON
object stored under ``(collection, id)``; ids are generated on create.

Table: documents
  - One row per document. ``data`` holds the JSON body.
  - ``created_at`` / ``updated_at`` are ISO-8601 UTC strings.

Filtering (``get_all``) supports the operators

    ==  !=  <  <=  >  >=  in  array-contains

Documents that lack the filtered field, or whose value cannot be compared
with the filter value, do not match. ``field``, ``operator`` and ``value``
must be given together or not at all.

Collection names are optionally suffixed with the deployment environment
(``suffix_collection("email_opt_ins", "staging")`` -> ``email_opt_ins_staging``)
so that several environments can share one database file.

DB file: documents.sqlite (same directory as config.py) unless
``DOCUMENT_DB_PATH`` is set.

Public API:
    init_db()               Create the table + index if absent. Idempotent.
    get_connection()        Context-manager yielding an open sqlite3.Connection.
    suffix_collection()     Apply the environment suffix to a collection name.
    SQLiteDocumentStore     DocumentStore implementation.

Project: HealthCloud Clinical Backend
"""

from __future__ import annotations

import json
import logging
import operator as _op
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional

from config import DEFAULT_DOCUMENT_DB_PATH
from errors import InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)

_DDL = """
CREATE TABLE IF NOT EXISTS documents (
    collection  TEXT    NOT NULL,
    id          TEXT    NOT NULL,
    data        TEXT    NOT NULL,
    created_at  TEXT    NOT NULL,
    updated_at  TEXT    NOT NULL,
    PRIMARY KEY (collection, id)
);

CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents (collection, created_at);
"""


# Default for get_all's value; None is a real filter value.
_UNSET: Any = object()


def _array_contains(field_value: Any, value: Any) -> bool:
    return isinstance(field_value, list) and value in field_value


def _in(field_value: Any, value: Any) -> bool:
    return field_value in value


_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": _op.eq,
    "!=": _op.ne,
    "<": _op.lt,
    "<=": _op.le,
    ">": _op.gt,
    ">=": _op.ge,
    "in": _in,
    "array-contains": _array_contains,
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def suffix_collection(name: str, environment: str = "") -> str:
    """Return *name* with ``_<environment>`` appended when an environment is set."""
    environment = (environment or "").strip()
    return f"{name}_{environment}" if environment else name


# ---------------------------------------------------------------------------
# Lifecycle helpers
# ---------------------------------------------------------------------------

def init_db(db_path: Optional[Path] = None) -> None:
    """
    Create the documents table and its index if they do not exist.

    Args:
        db_path: Override the default DB file location. Useful in tests.
    """
    path = db_path or DEFAULT_DOCUMENT_DB_PATH
    with sqlite3.connect(str(path)) as conn:
        conn.executescript(_DDL)
        conn.commit()
    logger.info("Document DB ready at '%s'.", path)


@contextmanager
def get_connection(
    db_path: Optional[Path] = None,
) -> Generator[sqlite3.Connection, None, None]:
    """
    Yield an open ``sqlite3.Connection`` that commits on clean exit and rolls
    back on exception.
    """
    path = db_path or DEFAULT_DOCUMENT_DB_PATH
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class SQLiteDocumentStore:
    """
    ``DocumentStore`` implementation over a single SQLite file.

    Returned documents are plain dicts with the document id under ``"id"``.
    """

    def __init__(self, db_path: Optional[Path] = None) -> None:
        self.db_path = Path(db_path) if db_path else DEFAULT_DOCUMENT_DB_PATH
        init_db(self.db_path)

    @staticmethod
    def _check_collection(collection: str) -> None:
        if not isinstance(collection, str) or not collection.strip():
            raise InvalidInputError("a collection name is required")

    @staticmethod
    def _row_to_document(row: sqlite3.Row) -> Dict[str, Any]:
        document = json.loads(row["data"])
        document["id"] = row["id"]
        return document

    def create(self, collection: str, data: Dict[str, Any]) -> str:
        """Insert *data* as a new document and return its generated id."""
        self._check_collection(collection)
        if not isinstance(data, dict):
            raise InvalidInputError("document data must be a dict")

        document_id = uuid.uuid4().hex
        now = _now_iso()
        with get_connection(self.db_path) as conn:
            conn.execute(
                "INSERT INTO documents (collection, id, data, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (collection, document_id, json.dumps(data), now, now),
            )
        logger.debug("Created document %s/%s.", collection, document_id)
        return document_id

    def get(self, collection: str, document_id: str) -> Dict[str, Any]:
        self._check_collection(collection)
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT id, data FROM documents WHERE collection = ? AND id = ?",
                (collection, document_id),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"document {collection}/{document_id} not found")
        return self._row_to_document(row)

    def get_all(
        self,
        collection: str,
        field: Optional[str] = None,
        operator: Optional[str] = None,
        value: Any = _UNSET,
    ) -> List[Dict[str, Any]]:
        """
        Return every document in *collection*, or only those where
        ``document[field] <operator> value`` holds. ``value`` may be ``None``
        (``get_all(coll, "closedAt", "==", None)``).

        Raises:
            InvalidInputError: if only some of field/operator/value are given,
                               or the operator is not supported.
        """
        self._check_collection(collection)
        given = [bool(field), bool(operator), value is not _UNSET]
        if any(given) and not all(given):
            raise InvalidInputError("field, operator and value must be supplied together")

        predicate: Optional[Callable[[Any, Any], bool]] = None
        if all(given):
            predicate = _OPERATORS.get(operator)  # type: ignore[arg-type]
            if predicate is None:
                raise InvalidInputError(f"unsupported operator {operator!r}")
            if operator == "in" and not isinstance(value, (list, tuple, set)):
                raise InvalidInputError("the 'in' operator needs a list value")

        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT id, data FROM documents WHERE collection = ? ORDER BY rowid",
                (collection,),
            ).fetchall()

        documents = [self._row_to_document(row) for row in rows]
        if predicate is None:
            return documents

        matched = []
        for document in documents:
            if field not in document:
                continue
            try:
                if predicate(document[field], value):
                    matched.append(document)
            except TypeError:
                continue
        return matched

    def update(self, collection: str, document_id: str, data: Dict[str, Any]) -> None:
        """Merge *data* into an existing document."""
        self._check_collection(collection)
        if not isinstance(data, dict):
            raise InvalidInputError("document data must be a dict")

        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT data FROM documents WHERE collection = ? AND id = ?",
                (collection, document_id),
            ).fetchone()
            if row is None:
                raise NotFoundError(f"document {collection}/{document_id} not found")
            merged = json.loads(row["data"])
            merged.update({key: val for key, val in data.items() if key != "id"})
            conn.execute(
                "UPDATE documents SET data = ?, updated_at = ? WHERE collection = ? AND id = ?",
                (json.dumps(merged), _now_iso(), collection, document_id),
            )

    def delete(self, collection: str, document_id: str) -> None:
        """Delete a document; deleting a missing document is not an error."""
        self._check_collection(collection)
        with get_connection(self.db_path) as conn:
            conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (collection, document_id),
            )
        logger.debug("Deleted document %s/%s.", collection, document_id)
