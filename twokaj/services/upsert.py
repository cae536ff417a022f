# Dialect-native insert-or-update

"""
Upsert helpers built on INSERT .. ON CONFLICT DO UPDATE.

The conflict is resolved by the database in one statement, so a direct CRUD
write and a reconciled write touching the same id cannot race the way a
select-then-insert would.
"""
from typing import Dict, Iterable, Optional

from sqlalchemy import case, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from twokaj.db.models import LISTING_CLOSED, GalleryItem, Listing, Message, User

# Columns never rewritten once a row exists
IMMUTABLE_COLUMNS = {"id", "created_at"}


def _dialect_insert(db: Session, table):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"upsert is not supported on {dialect}")


def upsert(db: Session, model, values: Dict, overrides: Optional[Dict] = None,
           immutable: Iterable[str] = ()):
    """
    Insert `values` into `model`'s table or overwrite the mutable columns of
    the row with the same id.

    `overrides` maps column names to callables receiving the statement's
    `excluded` namespace and returning the SET expression for that column.
    `immutable` names columns kept as first written, on top of IMMUTABLE_COLUMNS.
    """
    table = model.__table__
    values = {k: v for k, v in values.items() if k in table.c}
    if values.get("created_at") is None:
        values.pop("created_at", None)

    frozen = IMMUTABLE_COLUMNS.union(immutable)
    stmt = _dialect_insert(db, table).values(**values)
    set_ = {
        name: stmt.excluded[name]
        for name in values
        if name not in frozen
    }
    for name, build in (overrides or {}).items():
        set_[name] = build(stmt.excluded)
    if "updated_at" in table.c:
        set_["updated_at"] = func.now()

    stmt = stmt.on_conflict_do_update(index_elements=[table.c.id], set_=set_)
    db.execute(stmt)


def _listing_status_guard(excluded):
    # closed is terminal: an open-bearing replay cannot reopen the listing
    return case(
        (Listing.__table__.c.status == LISTING_CLOSED, LISTING_CLOSED),
        else_=excluded.status,
    )


def upsert_user(db: Session, values: Dict):
    upsert(db, User, values)


def upsert_listing(db: Session, values: Dict):
    upsert(db, Listing, values, overrides={"status": _listing_status_guard}, immutable=("user_id",))


def upsert_message(db: Session, values: Dict):
    # a message stays in its thread between the same two people
    upsert(db, Message, values, immutable=("ad_id", "sender_id", "receiver_id"))


def upsert_gallery_item(db: Session, values: Dict):
    upsert(db, GalleryItem, values)


def existing_ids(db: Session, model, ids: Iterable[str]) -> set:
    ids = set(ids)
    if not ids:
        return set()
    rows = db.query(model.id).filter(model.id.in_(ids)).all()
    return {row[0] for row in rows}
