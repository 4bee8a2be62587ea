"""
SQLAlchemy-backed lead store and targets ledger.

Sessions are synchronous; every call runs in a worker thread so the
engine's event loop is never blocked on the database.
"""

import asyncio
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import case, select
from sqlalchemy.exc import DataError, ProgrammingError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from leadsync.database import SessionLocal
from leadsync.db_models import DBLeadDocument, DBLeadHistory, DBSalesTarget
from leadsync.errors import LeadNotFoundError, StoreError, StoreQueryError
from leadsync.logging_config import get_logger
from leadsync.models import HistoryEntry, HistoryKind
from leadsync.store import (
    SUPPORTED_OPS,
    LeadStore,
    Predicate,
    QueryResult,
    SortSpec,
    StoredDocument,
    TargetsLedger,
    decode_cursor,
    month_key,
)

logger = get_logger(__name__)


def _typed(field_name: str, sample):
    """JSON-path expression for a document field, cast to match `sample`."""
    element = DBLeadDocument.document[field_name]
    if isinstance(sample, bool):
        return element.as_boolean()
    if isinstance(sample, (int, float)):
        return element.as_float()
    return element.as_string()


def compile_predicate(predicate: Predicate):
    if predicate.op not in SUPPORTED_OPS:
        raise StoreQueryError(f"Unsupported operator: {predicate.op}")

    if predicate.op == "in":
        values = list(predicate.value)
        if not values:
            return DBLeadDocument.id.is_(None)
        return _typed(predicate.field, values[0]).in_(values)

    column = _typed(predicate.field, predicate.value)
    if predicate.op == "==":
        return column == predicate.value
    if predicate.op == ">=":
        return column >= predicate.value
    if predicate.op == "<=":
        return column <= predicate.value
    if predicate.op == ">":
        return column > predicate.value
    return column < predicate.value


class SqlLeadStore(LeadStore):
    """Lead documents for one collection in the `lead_documents` table."""

    def __init__(self, collection: str, session_factory: sessionmaker = SessionLocal):
        self.collection = collection
        self.session_factory = session_factory

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except SQLAlchemyError as e:
            logger.error("lead_store_error", collection=self.collection, error=str(e))
            raise StoreError(f"Lead store error for {self.collection}: {e}") from e

    async def _run_query(self, *args):
        """Like `_run`, but a statement the database rejects is a StoreQueryError."""
        try:
            return await asyncio.to_thread(self._query, *args)
        except (DataError, ProgrammingError) as e:
            # Bad cast or unknown function in this one statement; the connection is fine.
            logger.warning("lead_query_rejected", collection=self.collection, error=str(e))
            raise StoreQueryError(f"Query rejected for {self.collection}: {e}") from e
        except SQLAlchemyError as e:
            logger.error("lead_store_error", collection=self.collection, error=str(e))
            raise StoreError(f"Lead store error for {self.collection}: {e}") from e

    def _row(self, db, lead_id: str) -> DBLeadDocument:
        row = db.get(DBLeadDocument, (self.collection, lead_id))
        if row is None:
            raise LeadNotFoundError(lead_id)
        return row

    # Queries -----------------------------------------------------------

    def _query(self, predicates, sort, cursor, limit) -> QueryResult:
        offset = decode_cursor(cursor)
        stmt = select(DBLeadDocument).where(DBLeadDocument.collection == self.collection)
        for predicate in predicates:
            stmt = stmt.where(compile_predicate(predicate))

        if sort is not None:
            element = DBLeadDocument.document[sort.field]
            key = element.as_float() if sort.numeric else element.as_string()
            missing_last = case((key.is_(None), 1), else_=0)
            if sort.descending:
                stmt = stmt.order_by(missing_last, key.desc(), DBLeadDocument.id.desc())
            else:
                stmt = stmt.order_by(missing_last, key.asc(), DBLeadDocument.id.asc())
        else:
            stmt = stmt.order_by(DBLeadDocument.id)

        stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit + 1)

        with self.session_factory() as db:
            rows = db.execute(stmt).scalars().all()
            has_more = limit is not None and len(rows) > limit
            rows = rows[:limit] if limit is not None else rows
            items = [StoredDocument(row.id, dict(row.document or {})) for row in rows]

        end = offset + len(items)
        return QueryResult(items=items, next_cursor=str(end) if has_more else None, has_more=has_more)

    async def query(self, predicates, sort: Optional[SortSpec] = None, cursor=None, limit=None) -> QueryResult:
        return await self._run_query(list(predicates), sort, cursor, limit)

    def _get(self, lead_id: str) -> StoredDocument:
        with self.session_factory() as db:
            row = self._row(db, lead_id)
            return StoredDocument(row.id, dict(row.document or {}))

    async def get(self, lead_id: str) -> StoredDocument:
        return await self._run(self._get, lead_id)

    # Writes ------------------------------------------------------------

    def _write(self, lead_id: str, fields: dict):
        with self.session_factory() as db:
            row = self._row(db, lead_id)
            # Reassign so the JSON column registers the change.
            row.document = {**(row.document or {}), **fields}
            db.commit()

    async def write(self, lead_id: str, fields: dict) -> None:
        await self._run(self._write, lead_id, dict(fields))

    def _insert(self, document: dict, lead_id: str) -> str:
        with self.session_factory() as db:
            db.add(DBLeadDocument(collection=self.collection, id=lead_id, document=dict(document)))
            db.commit()
        return lead_id

    async def insert(self, document: dict, lead_id: Optional[str] = None) -> str:
        return await self._run(self._insert, document, lead_id or uuid.uuid4().hex)

    def _delete(self, lead_id: str):
        with self.session_factory() as db:
            row = self._row(db, lead_id)
            db.delete(row)
            db.query(DBLeadHistory).filter(
                DBLeadHistory.collection == self.collection,
                DBLeadHistory.lead_id == lead_id,
            ).delete()
            db.commit()

    async def delete(self, lead_id: str) -> None:
        await self._run(self._delete, lead_id)

    # History -----------------------------------------------------------

    def _append_history(self, lead_id: str, entry: HistoryEntry):
        with self.session_factory() as db:
            self._row(db, lead_id)
            db.add(DBLeadHistory(
                collection=self.collection,
                lead_id=lead_id,
                kind=entry.kind.value,
                content=entry.content,
                created_by=entry.created_by,
                created_by_id=entry.created_by_id,
                previous_assignee=entry.previous_assignee,
                new_assignee=entry.new_assignee,
                created_at=entry.created_at,
            ))
            db.commit()

    async def append_history(self, lead_id: str, entry: HistoryEntry) -> None:
        await self._run(self._append_history, lead_id, entry)

    def _list_history(self, lead_id: str) -> list:
        with self.session_factory() as db:
            rows = (
                db.query(DBLeadHistory)
                .filter(
                    DBLeadHistory.collection == self.collection,
                    DBLeadHistory.lead_id == lead_id,
                )
                .order_by(DBLeadHistory.created_at.desc(), DBLeadHistory.id.desc())
                .all()
            )
            return [
                HistoryEntry(
                    content=row.content,
                    created_by=row.created_by,
                    created_by_id=row.created_by_id,
                    created_at=row.created_at,
                    kind=HistoryKind(row.kind),
                    previous_assignee=row.previous_assignee,
                    new_assignee=row.new_assignee,
                )
                for row in rows
            ]

    async def list_history(self, lead_id: str) -> list:
        return await self._run(self._list_history, lead_id)


class SqlTargetsLedger(TargetsLedger):
    """Monthly converted-lead counters in the `sales_targets` table."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def _row(self, db, user_name: str, when: datetime) -> Optional[DBSalesTarget]:
        return (
            db.query(DBSalesTarget)
            .filter(DBSalesTarget.month == month_key(when), DBSalesTarget.user_name == user_name)
            .first()
        )

    def _increment(self, user_name, user_id, when) -> int:
        with self.session_factory() as db:
            row = self._row(db, user_name, when)
            if row is None:
                row = DBSalesTarget(month=month_key(when), user_name=user_name, user_id=user_id, converted_leads=0)
                db.add(row)
            row.converted_leads = (row.converted_leads or 0) + 1
            db.commit()
            return row.converted_leads

    def _decrement(self, user_name, when) -> int:
        with self.session_factory() as db:
            row = self._row(db, user_name, when)
            if row is None:
                return 0
            row.converted_leads = max(0, (row.converted_leads or 0) - 1)
            db.commit()
            return row.converted_leads

    def _get(self, user_name, when) -> int:
        with self.session_factory() as db:
            row = self._row(db, user_name, when)
            return row.converted_leads if row else 0

    async def increment(self, user_name, user_id, when) -> int:
        return await asyncio.to_thread(self._increment, user_name, user_id, when)

    async def decrement(self, user_name, when) -> int:
        return await asyncio.to_thread(self._decrement, user_name, when)

    async def get(self, user_name, when) -> int:
        return await asyncio.to_thread(self._get, user_name, when)
