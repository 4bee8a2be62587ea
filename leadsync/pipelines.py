"""
Lead pipelines.

The console runs the same engine over three lead collections that differ
only in collection name, document field names, status vocabulary and a
few filter quirks. Each difference lives in a PipelineConfig; nothing
else in the codebase knows which pipeline it is serving.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from leadsync.errors import UnknownPipelineError
from leadsync.models import CallbackInfo, Lead, MessageTemplate

# Stored status values that all mean "no status yet".
BLANK_STATUS_VALUES = ("", "-", "–", "—")

_PHONE_JUNK_RE = re.compile(r"[\s\-()+]")


def normalize_phone(phone: Any) -> str:
    """Strip spaces, dashes, parentheses and plus signs from a phone number."""
    return _PHONE_JUNK_RE.sub("", str(phone or ""))


@dataclass(frozen=True)
class FieldMap:
    """Logical lead field -> document field in the pipeline's collection."""
    name: str = "name"
    email: str = "email"
    phone: str = "mobile"
    phone_normalized: Optional[str] = "mobile_normalized"
    source: str = "source_database"
    status: str = "status"
    assigned_to: str = "assigned_to"
    assigned_to_id: str = "assignedToId"
    note: str = "lastNote"
    note_by: str = "lastNoteBy"
    note_at: str = "lastNoteDate"
    query: str = "query"
    ingested_at: str = "date"
    last_modified: str = "lastModified"
    converted: str = "convertedToClient"
    converted_at: str = "convertedAt"
    language: str = "language_barrier"
    callback_info: str = "callback_info"

    def document_field(self, logical: str) -> str:
        try:
            return getattr(self, logical)
        except AttributeError:
            raise KeyError(f"No document field for lead field '{logical}'") from None


@dataclass(frozen=True)
class StatusSet:
    """Status vocabulary of one pipeline and the values with side effects."""
    options: tuple
    no_status: str = "No Status"
    follow_up: str = "Callback"
    language_barrier: str = "Language Barrier"
    converted: str = "Converted"

    @property
    def capture_statuses(self) -> frozenset:
        """Statuses that need a capture form before they are committed."""
        return frozenset({self.follow_up, self.language_barrier, self.converted})

    @property
    def no_status_values(self) -> tuple:
        return BLANK_STATUS_VALUES + (self.no_status,)

    def normalize(self, raw: Any) -> str:
        if raw is None or str(raw).strip() in BLANK_STATUS_VALUES:
            return self.no_status
        return str(raw)

    def is_valid(self, status: str) -> bool:
        return status in self.options


@dataclass(frozen=True)
class PipelineConfig:
    """Everything that varies between lead pipelines."""
    name: str
    collection: str
    channel_name: str
    statuses: StatusSet
    fields: FieldMap = field(default_factory=FieldMap)
    source_aliases: dict = field(default_factory=dict)
    # When False the store cannot range-filter on the ingestion field
    # (leads carry several candidate date fields), so the date range is
    # applied client-side by the filter engine.
    server_side_date_range: bool = True
    templates: tuple = ()

    def source_values(self, source_filter: str) -> tuple:
        """Stored source values matched by a source filter."""
        return tuple(self.source_aliases.get(source_filter, (source_filter,)))

    def find_template(self, template_id: str) -> Optional[MessageTemplate]:
        for template in self.templates:
            if template.template_id == template_id:
                return template
        return None

    def to_lead(self, doc_id: str, doc: dict) -> Lead:
        """Build a Lead from a stored document."""
        f = self.fields
        callback = doc.get(f.callback_info)
        return Lead(
            id=doc_id,
            name=str(doc.get(f.name) or ""),
            email=str(doc.get(f.email) or ""),
            phone=str(doc.get(f.phone) or ""),
            source=str(doc.get(f.source) or ""),
            status=self.statuses.normalize(doc.get(f.status)),
            assigned_to=doc.get(f.assigned_to),
            assigned_to_id=doc.get(f.assigned_to_id) or None,
            note=str(doc.get(f.note) or ""),
            query=str(doc.get(f.query) or ""),
            ingested_at=_as_millis(doc.get(f.ingested_at)),
            last_modified=doc.get(f.last_modified),
            converted=bool(doc.get(f.converted) or False),
            converted_at=doc.get(f.converted_at),
            language=doc.get(f.language),
            callback_info=CallbackInfo.model_validate(callback) if callback else None,
        )

    def to_document(self, updates: dict) -> dict:
        """Translate logical lead fields into a partial store document."""
        doc = {}
        for logical, value in updates.items():
            doc[self.fields.document_field(logical)] = _to_stored(value)
            if logical == "phone" and self.fields.phone_normalized:
                doc[self.fields.phone_normalized] = normalize_phone(value)
            if logical == "name":
                doc[f"{self.fields.name}_lowercase"] = str(value or "").lower()
        return doc


def _as_millis(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _to_stored(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, CallbackInfo):
        return value.model_dump(mode="json")
    return value


_DEBT_TEMPLATES = (
    MessageTemplate(name="CIBIL", template_id="ama_dashboard_credit_report",
                    description="Send CIBIL credit report information"),
    MessageTemplate(name="Answered Call", template_id="ama_dashboard_after_call",
                    description="Follow-up after answered call"),
    MessageTemplate(name="Loan Settlement?", template_id="ama_dashboard_loan_settlement1",
                    description="Ask about loan settlement"),
    MessageTemplate(name="No Answer", template_id="ama_dashboard_no_answer",
                    description="Follow-up for unanswered calls"),
    MessageTemplate(name="What we do?", template_id="ama_dashboard_struggling1",
                    description="Explain what the firm does"),
)

_DEBT_STATUSES = (
    "No Status",
    "Interested",
    "Not Interested",
    "Not Answering",
    "Callback",
    "Future Potential",
    "Converted",
    "Loan Required",
    "Cibil Issue",
    "Language Barrier",
    "Retargeting",
    "Closed Lead",
)

AMA = PipelineConfig(
    name="ama",
    collection="ama_leads",
    channel_name="AMA Legal Solutions",
    statuses=StatusSet(options=_DEBT_STATUSES + ("Short Loan",)),
    source_aliases={
        "ama": ("ama",),
        "credsettlee": ("credsettlee", "credsettle", "CS", "cs"),
        "settleloans": ("settleloans",),
    },
    server_side_date_range=False,
    templates=_DEBT_TEMPLATES,
)

BILLCUT = PipelineConfig(
    name="billcut",
    collection="billcutLeads",
    channel_name="Bill Cut",
    statuses=StatusSet(options=_DEBT_STATUSES),
    fields=FieldMap(status="category", note="sales_notes", query="remarks"),
    templates=_DEBT_TEMPLATES,
)

CRM = PipelineConfig(
    name="crm",
    collection="crm_leads",
    channel_name="AMA Legal Solutions",
    statuses=StatusSet(
        options=(
            "No Status",
            "Interested",
            "Not Interested",
            "Not Answering",
            "Follow-up",
            "Converted",
            "Language Barrier",
            "Closed",
        ),
        follow_up="Follow-up",
    ),
    fields=FieldMap(
        phone="number",
        source="source",
        assigned_to="assignedTo",
        note="salesNotes",
        query="queries",
        ingested_at="created",
    ),
    templates=_DEBT_TEMPLATES[1:4],
)

PIPELINES = {p.name: p for p in (AMA, BILLCUT, CRM)}


def get_pipeline(name: str) -> PipelineConfig:
    """Look up a pipeline by name."""
    try:
        return PIPELINES[name]
    except KeyError:
        raise UnknownPipelineError(name) from None
