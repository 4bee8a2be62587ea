"""
Lead store interface and in-memory implementation.

The engine talks to persistence only through LeadStore. Documents use the
pipeline's own field names; translation to Lead happens in pipelines.py.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from leadsync.errors import LeadNotFoundError, StoreError, StoreQueryError
from leadsync.models import HistoryEntry

SUPPORTED_OPS = ("==", "in", ">=", "<=", ">", "<")

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


@dataclass(frozen=True)
class Predicate:
    """One equality / membership / range condition on a document field."""
    field: str
    op: str
    value: Any


@dataclass(frozen=True)
class SortSpec:
    field: str
    descending: bool = True
    # Lets SQL backends pick a numeric or text ordering for the field.
    numeric: bool = True


@dataclass(frozen=True)
class StoredDocument:
    id: str
    data: dict


@dataclass
class QueryResult:
    items: list
    next_cursor: Optional[str] = None
    has_more: bool = False


def prefix_range(field_name: str, prefix: str) -> list:
    """Predicates matching every string value that starts with `prefix`."""
    return [
        Predicate(field_name, ">=", prefix),
        Predicate(field_name, "<=", prefix + "\uf8ff"),
    ]


class LeadStore(ABC):
    """Persistence for one lead collection."""

    collection: str

    @abstractmethod
    async def query(
        self,
        predicates: list,
        sort: Optional[SortSpec] = None,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> QueryResult:
        """Return documents matching every predicate (logical AND)."""

    @abstractmethod
    async def get(self, lead_id: str) -> StoredDocument:
        """Fetch one document; raises LeadNotFoundError."""

    @abstractmethod
    async def write(self, lead_id: str, fields: dict) -> None:
        """Merge `fields` into an existing document."""

    @abstractmethod
    async def append_history(self, lead_id: str, entry: HistoryEntry) -> None:
        """Append an immutable history entry."""

    @abstractmethod
    async def list_history(self, lead_id: str) -> list:
        """History entries, newest first."""

    @abstractmethod
    async def delete(self, lead_id: str) -> None:
        """Remove a document and its history."""

    @abstractmethod
    async def insert(self, document: dict, lead_id: Optional[str] = None) -> str:
        """Create a document and return its id."""


def _matches(doc: dict, predicate: Predicate) -> bool:
    value = doc.get(predicate.field)
    if predicate.op == "==":
        return value == predicate.value
    if predicate.op == "in":
        return value in predicate.value
    if value is None:
        return False
    try:
        if predicate.op == ">=":
            return value >= predicate.value
        if predicate.op == "<=":
            return value <= predicate.value
        if predicate.op == ">":
            return value > predicate.value
        if predicate.op == "<":
            return value < predicate.value
    except TypeError:
        return False
    raise StoreQueryError(f"Unsupported operator: {predicate.op}")


def decode_cursor(cursor: Optional[str]) -> int:
    if not cursor:
        return 0
    try:
        return max(0, int(cursor))
    except ValueError:
        raise StoreQueryError(f"Invalid cursor: {cursor!r}") from None


class InMemoryLeadStore(LeadStore):
    """
    Dict-backed store for local development and tests.

    `unindexed_fields` makes any query touching those fields fail the way a
    missing index does; `failing_writes` makes document writes to those ids
    fail while history appends still succeed.
    """

    def __init__(self, collection: str, documents=None, unindexed_fields=None, failing_writes=None):
        self.collection = collection
        self.unindexed_fields = set(unindexed_fields or ())
        self.failing_writes = set(failing_writes or ())
        self.unreachable = False
        self._docs: dict[str, dict] = {k: dict(v) for k, v in (documents or {}).items()}
        self._history: dict[str, list] = {}

    def _check_reachable(self):
        if self.unreachable:
            raise StoreError(f"Lead store for {self.collection} is unreachable")

    async def query(self, predicates, sort=None, cursor=None, limit=None) -> QueryResult:
        await asyncio.sleep(0)
        self._check_reachable()
        for predicate in predicates:
            if predicate.op not in SUPPORTED_OPS:
                raise StoreQueryError(f"Unsupported operator: {predicate.op}")
            if predicate.field in self.unindexed_fields:
                raise StoreQueryError(f"No index for field '{predicate.field}'")

        matched = [
            StoredDocument(doc_id, dict(doc))
            for doc_id, doc in self._docs.items()
            if all(_matches(doc, p) for p in predicates)
        ]

        if sort is not None:
            present = [d for d in matched if d.data.get(sort.field) is not None]
            missing = [d for d in matched if d.data.get(sort.field) is None]
            present.sort(key=lambda d: (d.data[sort.field], d.id), reverse=sort.descending)
            missing.sort(key=lambda d: d.id)
            matched = present + missing

        offset = decode_cursor(cursor)
        if limit is None:
            page = matched[offset:]
        else:
            page = matched[offset:offset + limit]
        end = offset + len(page)
        has_more = end < len(matched)
        return QueryResult(items=page, next_cursor=str(end) if has_more else None, has_more=has_more)

    async def get(self, lead_id: str) -> StoredDocument:
        await asyncio.sleep(0)
        self._check_reachable()
        doc = self._docs.get(lead_id)
        if doc is None:
            raise LeadNotFoundError(lead_id)
        return StoredDocument(lead_id, dict(doc))

    async def write(self, lead_id: str, fields: dict) -> None:
        await asyncio.sleep(0)
        self._check_reachable()
        if lead_id in self.failing_writes:
            raise StoreError(f"Write rejected for lead {lead_id}")
        if lead_id not in self._docs:
            raise LeadNotFoundError(lead_id)
        self._docs[lead_id] = {**self._docs[lead_id], **fields}

    async def append_history(self, lead_id: str, entry: HistoryEntry) -> None:
        await asyncio.sleep(0)
        self._check_reachable()
        if lead_id not in self._docs:
            raise LeadNotFoundError(lead_id)
        self._history.setdefault(lead_id, []).append(entry)

    async def list_history(self, lead_id: str) -> list:
        await asyncio.sleep(0)
        self._check_reachable()
        entries = self._history.get(lead_id, [])
        return sorted(entries, key=lambda e: e.created_at, reverse=True)

    async def delete(self, lead_id: str) -> None:
        await asyncio.sleep(0)
        self._check_reachable()
        if self._docs.pop(lead_id, None) is None:
            raise LeadNotFoundError(lead_id)
        self._history.pop(lead_id, None)

    async def insert(self, document: dict, lead_id: Optional[str] = None) -> str:
        await asyncio.sleep(0)
        self._check_reachable()
        lead_id = lead_id or uuid.uuid4().hex
        self._docs[lead_id] = dict(document)
        return lead_id


# ---------------------------------------------------------------------------
# Sales targets
# ---------------------------------------------------------------------------

def month_key(when: datetime) -> str:
    """Targets are bucketed per calendar month, e.g. "Oct_2026"."""
    return f"{_MONTHS[when.month - 1]}_{when.year}"


class TargetsLedger(ABC):
    """Per-month, per-operator count of converted leads."""

    @abstractmethod
    async def increment(self, user_name: str, user_id: Optional[str], when: datetime) -> int:
        """Add one conversion; returns the new count."""

    @abstractmethod
    async def decrement(self, user_name: str, when: datetime) -> int:
        """Remove one conversion, never going below zero; returns the new count."""

    @abstractmethod
    async def get(self, user_name: str, when: datetime) -> int:
        """Current count for the month containing `when`."""


class InMemoryTargetsLedger(TargetsLedger):

    def __init__(self):
        self._counts: dict[tuple, int] = {}

    async def increment(self, user_name, user_id, when) -> int:
        key = (month_key(when), user_name)
        self._counts[key] = self._counts.get(key, 0) + 1
        return self._counts[key]

    async def decrement(self, user_name, when) -> int:
        key = (month_key(when), user_name)
        self._counts[key] = max(0, self._counts.get(key, 0) - 1)
        return self._counts[key]

    async def get(self, user_name, when) -> int:
        return self._counts.get((month_key(when), user_name), 0)
