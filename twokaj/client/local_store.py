# On-device durable store

"""
Local Durable Store: cached entities plus the operation queue, in one SQLite
file on the device.

Every public method runs in its own transaction, so a crash between two calls
never leaves half a write behind. Several handles (foreground app, background
trigger) may open the same file; SQLite's locking serializes their writes.
"""
import logging
from contextlib import contextmanager
from typing import Iterable, List, Optional

from pydantic_core import to_jsonable_python
from sqlalchemy import (
    JSON, Column, DateTime, Integer, MetaData, String, Table, Text,
    delete, event, select, update,
)
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError

from twokaj.client.operations import COLLECTIONS, DeadLetter, Operation, utcnow
from twokaj.core.errors import StorageError
from twokaj.db.session import make_engine

logger = logging.getLogger(__name__)

CURRENT_USER_KEY = "current_user"

metadata = MetaData()

cache_entries = Table(
    "cache_entries", metadata,
    Column("collection", String, primary_key=True),
    Column("id", String, primary_key=True),
    Column("data", JSON, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

operation_queue = Table(
    "operation_queue", metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("id", String, unique=True, nullable=False),
    Column("kind", String, nullable=False),
    Column("collection", String, nullable=False),
    Column("entity_id", String, nullable=False, index=True),
    Column("payload", JSON, nullable=False),
    Column("enqueued_at", DateTime, nullable=False),
    Column("attempt_count", Integer, nullable=False, default=0),
    Column("next_attempt_at", DateTime, nullable=True),
    Column("last_error", Text, nullable=True),
    # seq must never be reused, even after the tail is removed
    sqlite_autoincrement=True,
)

dead_letters = Table(
    "dead_letters", metadata,
    Column("id", String, primary_key=True),
    Column("kind", String, nullable=False),
    Column("payload", JSON, nullable=False),
    Column("enqueued_at", DateTime, nullable=False),
    Column("attempt_count", Integer, nullable=False),
    Column("failed_at", DateTime, nullable=False),
    Column("reason", Text, nullable=False),
)

kv = Table(
    "kv", metadata,
    Column("key", String, primary_key=True),
    Column("value", JSON, nullable=True),
)


def _enable_wal(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def _check_collection(collection: str):
    if collection not in COLLECTIONS:
        raise ValueError(f"Unknown collection: {collection}")


def _to_operation(row) -> Operation:
    return Operation(
        seq=row.seq,
        id=row.id,
        kind=row.kind,
        payload=row.payload,
        enqueued_at=row.enqueued_at,
        attempt_count=row.attempt_count,
        next_attempt_at=row.next_attempt_at,
        last_error=row.last_error,
    )


class LocalStore:
    """Crash-safe, transactional storage for the device."""

    def __init__(self, path: str):
        self.path = path
        url = "sqlite://" if path == ":memory:" else f"sqlite:///{path}"
        self.engine = make_engine(url, connect_args={"timeout": 30})
        if path != ":memory:":
            event.listen(self.engine, "connect", _enable_wal)
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Cannot open local store at {path}: {e}") from e

    def close(self):
        self.engine.dispose()

    @contextmanager
    def _transaction(self):
        try:
            with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            logger.error("Local store failure: %s", e)
            raise StorageError(str(e)) from e

    # ------------------------------------------------------------------
    # Cached entities
    # ------------------------------------------------------------------

    @staticmethod
    def _upsert_entity(conn, collection: str, entity: dict):
        if not entity.get("id"):
            raise ValueError("Cached entity needs an id")
        data = to_jsonable_python(entity)
        stmt = insert(cache_entries).values(
            collection=collection, id=data["id"], data=data, updated_at=utcnow()
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[cache_entries.c.collection, cache_entries.c.id],
            set_={"data": stmt.excluded.data, "updated_at": stmt.excluded.updated_at},
        )
        conn.execute(stmt)

    def put(self, collection: str, entity: dict):
        """Upsert one entity by id; duplicates overwrite."""
        _check_collection(collection)
        with self._transaction() as conn:
            self._upsert_entity(conn, collection, entity)

    def put_many(self, collection: str, entities: Iterable[dict]):
        _check_collection(collection)
        with self._transaction() as conn:
            for entity in entities:
                self._upsert_entity(conn, collection, entity)

    def get(self, collection: str, entity_id: str) -> Optional[dict]:
        _check_collection(collection)
        with self._transaction() as conn:
            row = conn.execute(
                select(cache_entries.c.data).where(
                    cache_entries.c.collection == collection,
                    cache_entries.c.id == entity_id,
                )
            ).first()
        return row.data if row else None

    def get_all(self, collection: str) -> List[dict]:
        _check_collection(collection)
        with self._transaction() as conn:
            rows = conn.execute(
                select(cache_entries.c.data).where(cache_entries.c.collection == collection)
            ).all()
        return [row.data for row in rows]

    def updated_since(self, collection: str, since) -> set:
        """Ids of entities written to the cache at or after `since`."""
        _check_collection(collection)
        with self._transaction() as conn:
            rows = conn.execute(
                select(cache_entries.c.id).where(
                    cache_entries.c.collection == collection,
                    cache_entries.c.updated_at >= since,
                )
            ).all()
        return {row.id for row in rows}

    def delete(self, collection: str, entity_id: str):
        _check_collection(collection)
        with self._transaction() as conn:
            conn.execute(delete(cache_entries).where(
                cache_entries.c.collection == collection,
                cache_entries.c.id == entity_id,
            ))

    def replace_all(self, collection: str, entities: Iterable[dict]):
        """
        Swap the whole collection for `entities` in one transaction.

        If anything fails the previous snapshot is left untouched.
        """
        _check_collection(collection)
        with self._transaction() as conn:
            conn.execute(delete(cache_entries).where(cache_entries.c.collection == collection))
            for entity in entities:
                self._upsert_entity(conn, collection, entity)

    def clear(self, collection: str):
        self.replace_all(collection, [])

    def clear_all(self):
        """Full cache invalidation; the queue is kept."""
        with self._transaction() as conn:
            conn.execute(delete(cache_entries))
            conn.execute(delete(kv))

    # ------------------------------------------------------------------
    # Operation queue
    # ------------------------------------------------------------------

    def enqueue(self, operation: Operation) -> Operation:
        """Append to the tail; the returned copy carries its sequence number."""
        with self._transaction() as conn:
            result = conn.execute(operation_queue.insert().values(
                id=operation.id,
                kind=operation.kind.value,
                collection=operation.collection,
                entity_id=operation.entity_id,
                payload=operation.payload,
                enqueued_at=operation.enqueued_at,
                attempt_count=operation.attempt_count,
            ))
            seq = result.inserted_primary_key[0]
        logger.info("Queued %s %s (seq %s)", operation.kind.value, operation.entity_id, seq)
        return operation.model_copy(update={"seq": seq})

    def dequeue(self, operation_id: str):
        """Remove an operation; removing one that is already gone is a no-op."""
        with self._transaction() as conn:
            conn.execute(delete(operation_queue).where(operation_queue.c.id == operation_id))

    def list_queue(self) -> List[Operation]:
        """Pending operations in enqueue order."""
        with self._transaction() as conn:
            rows = conn.execute(select(operation_queue).order_by(operation_queue.c.seq)).all()
        return [_to_operation(row) for row in rows]

    def get_operation(self, operation_id: str) -> Optional[Operation]:
        with self._transaction() as conn:
            row = conn.execute(
                select(operation_queue).where(operation_queue.c.id == operation_id)
            ).first()
        return _to_operation(row) if row else None

    def record_failure(self, operation_id: str, error: str, next_attempt_at=None) -> int:
        """
        Count a failed delivery attempt.

        Returns:
            int: the new attempt_count (0 if the operation is gone)
        """
        with self._transaction() as conn:
            conn.execute(
                update(operation_queue)
                .where(operation_queue.c.id == operation_id)
                .values(
                    attempt_count=operation_queue.c.attempt_count + 1,
                    next_attempt_at=next_attempt_at,
                    last_error=error,
                )
            )
            row = conn.execute(
                select(operation_queue.c.attempt_count).where(operation_queue.c.id == operation_id)
            ).first()
        return row.attempt_count if row else 0

    def pending_entity_ids(self, collection: str) -> set:
        """Ids of cached entities that still have an unacknowledged write."""
        with self._transaction() as conn:
            rows = conn.execute(
                select(operation_queue.c.entity_id).where(operation_queue.c.collection == collection)
            ).all()
        return {row.entity_id for row in rows}

    # ------------------------------------------------------------------
    # Dead letters
    # ------------------------------------------------------------------

    def dead_letter(self, operation_id: str, reason: str) -> Optional[DeadLetter]:
        """Move an operation out of the queue into dead_letters, atomically."""
        with self._transaction() as conn:
            row = conn.execute(
                select(operation_queue).where(operation_queue.c.id == operation_id)
            ).first()
            if row is None:
                return None
            letter = DeadLetter(
                id=row.id,
                kind=row.kind,
                payload=row.payload,
                enqueued_at=row.enqueued_at,
                attempt_count=row.attempt_count,
                failed_at=utcnow(),
                reason=reason,
            )
            conn.execute(dead_letters.insert().values(
                id=letter.id,
                kind=letter.kind.value,
                payload=letter.payload,
                enqueued_at=letter.enqueued_at,
                attempt_count=letter.attempt_count,
                failed_at=letter.failed_at,
                reason=letter.reason,
            ))
            conn.execute(delete(operation_queue).where(operation_queue.c.id == operation_id))
        logger.warning("Operation %s dead-lettered: %s", operation_id, reason)
        return letter

    def list_dead_letters(self) -> List[DeadLetter]:
        with self._transaction() as conn:
            rows = conn.execute(select(dead_letters).order_by(dead_letters.c.failed_at)).all()
        return [DeadLetter(**row._mapping) for row in rows]

    def discard_dead_letter(self, operation_id: str):
        with self._transaction() as conn:
            conn.execute(delete(dead_letters).where(dead_letters.c.id == operation_id))

    # ------------------------------------------------------------------
    # Key/value records
    # ------------------------------------------------------------------

    def set_value(self, key: str, value):
        with self._transaction() as conn:
            if value is None:
                conn.execute(delete(kv).where(kv.c.key == key))
                return
            stmt = insert(kv).values(key=key, value=to_jsonable_python(value))
            stmt = stmt.on_conflict_do_update(
                index_elements=[kv.c.key], set_={"value": stmt.excluded.value}
            )
            conn.execute(stmt)

    def get_value(self, key: str):
        with self._transaction() as conn:
            row = conn.execute(select(kv.c.value).where(kv.c.key == key)).first()
        return row.value if row else None

    def get_current_user(self) -> Optional[dict]:
        return self.get_value(CURRENT_USER_KEY)

    def set_current_user(self, user: Optional[dict]):
        self.set_value(CURRENT_USER_KEY, user)
