"""Data models for LeadSync."""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    """Operator role. Permission checks only consult `is_elevated`."""
    ADMIN = "admin"
    OVERLORD = "overlord"
    SALES = "sales"

    @property
    def is_elevated(self) -> bool:
        return self in (Role.ADMIN, Role.OVERLORD)

    @classmethod
    def parse(cls, value: str) -> "Role":
        """Parse a stored role string; "salesperson" is a legacy alias of sales."""
        normalized = (value or "").strip().lower()
        if normalized == "salesperson":
            return cls.SALES
        return cls(normalized)


class Actor(BaseModel):
    """The operator performing an action."""
    model_config = ConfigDict(frozen=True)

    name: str
    role: Role
    id: Optional[str] = None


class CallbackInfo(BaseModel):
    """A scheduled follow-up. At most one per lead, updated in place on reschedule."""
    model_config = ConfigDict(frozen=True)

    scheduled_at: datetime
    scheduled_by: str
    created_at: datetime


class Lead(BaseModel):
    """Lead model representing a prospective customer.

    Instances are frozen: every change produces a new object via
    `model_copy(update=...)`, so a list of leads can be swapped wholesale
    without readers observing a half-updated record.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    email: str = ""
    phone: str = ""
    source: str = ""
    status: str = ""
    assigned_to: Optional[str] = None
    assigned_to_id: Optional[str] = None
    note: str = ""
    query: str = ""
    ingested_at: Optional[int] = None  # epoch millis
    last_modified: Optional[datetime] = None
    converted: bool = False
    converted_at: Optional[datetime] = None
    language: Optional[str] = None
    callback_info: Optional[CallbackInfo] = None


class HistoryKind(str, Enum):
    NOTE = "note"
    ASSIGNMENT = "assignment"


class HistoryEntry(BaseModel):
    """Append-only history record for a lead."""
    model_config = ConfigDict(frozen=True)

    content: str
    created_by: str
    created_at: datetime
    kind: HistoryKind = HistoryKind.NOTE
    created_by_id: Optional[str] = None
    previous_assignee: Optional[str] = None
    new_assignee: Optional[str] = None


class SortDirection(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


class LeadView(str, Enum):
    ALL = "all"
    FOLLOW_UP = "follow_up"


class FilterState(BaseModel):
    """Filters chosen by the operator. Transient; never persisted."""
    model_config = ConfigDict(frozen=True)

    query: str = ""
    source: Optional[str] = None
    status: Optional[str] = None
    assignee: Optional[str] = None
    unassigned_only: bool = False
    my_leads: bool = False
    converted: Optional[bool] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    sort_key: Optional[str] = None
    sort_direction: SortDirection = SortDirection.DESCENDING
    view: LeadView = LeadView.ALL

    @property
    def is_searching(self) -> bool:
        return bool(self.query.strip())


class LeadPage(BaseModel):
    """One page of browse results.

    `client_filters` names the filters the store could not apply; the
    filter engine applies them to the page.
    """
    leads: list[Lead]
    next_cursor: Optional[str] = None
    has_more: bool = False
    client_filters: list[str] = Field(default_factory=list)


class SearchResult(BaseModel):
    """Ranked full-text search candidates."""
    leads: list[Lead]
    failed_fields: list[str] = Field(default_factory=list)


class BatchAction(str, Enum):
    ASSIGN = "assign"
    UNASSIGN = "unassign"
    SEND_MESSAGE = "send_message"


class BatchRequest(BaseModel):
    """One bulk action over a set of leads."""
    action: BatchAction
    lead_ids: list[str]
    assignee_name: Optional[str] = None
    assignee_id: Optional[str] = None
    template_id: Optional[str] = None


class BatchSummary(BaseModel):
    """Final report of a bulk job.

    A batch rejected by authorization has `allowed=False`, lists the
    offending leads in `denied_ids` and touched nothing.
    """
    job_id: str
    action: BatchAction
    total: int
    succeeded: int = 0
    failed: int = 0
    reasons: list[str] = Field(default_factory=list)
    rolled_back: list[str] = Field(default_factory=list)
    allowed: bool = True
    reason: Optional[str] = None
    denied_ids: list[str] = Field(default_factory=list)


class MessageTemplate(BaseModel):
    """Outbound message template available to a pipeline."""
    model_config = ConfigDict(frozen=True)

    name: str
    template_id: str
    description: str = ""


# ---------------------------------------------------------------------------
# HTTP request bodies
# ---------------------------------------------------------------------------

class NoteRequest(BaseModel):
    text: str


class StatusChangeRequest(BaseModel):
    """Status change plus whatever the capture form collected."""
    status: str
    callback_at: Optional[datetime] = None
    language: Optional[str] = None
    confirm: bool = False


class AssignRequest(BaseModel):
    assignee_name: str
    assignee_id: Optional[str] = None


class CallbackRequest(BaseModel):
    scheduled_at: datetime


class BulkRequest(BatchRequest):
    background: bool = False
