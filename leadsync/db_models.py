"""
SQLAlchemy tables backing the persistent lead store.

Leads are kept as JSON documents so that each pipeline keeps its own
field names; history and sales targets are ordinary tables.
"""

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, UniqueConstraint
from datetime import datetime, timezone

from leadsync.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class DBLeadDocument(Base):
    """One lead document in one pipeline collection."""
    __tablename__ = "lead_documents"

    collection = Column(String(64), primary_key=True)
    id = Column(String(64), primary_key=True)
    document = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class DBLeadHistory(Base):
    """Append-only note / assignment history for a lead."""
    __tablename__ = "lead_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    collection = Column(String(64), nullable=False, index=True)
    lead_id = Column(String(64), nullable=False, index=True)
    kind = Column(String(32), nullable=False)
    content = Column(Text, nullable=False)
    created_by = Column(String(255), nullable=False)
    created_by_id = Column(String(255))
    previous_assignee = Column(String(255))
    new_assignee = Column(String(255))
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class DBSalesTarget(Base):
    """Converted-lead counter per operator per month (e.g. "Oct_2026")."""
    __tablename__ = "sales_targets"
    __table_args__ = (UniqueConstraint("month", "user_name", name="uq_sales_target_month_user"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    month = Column(String(16), nullable=False, index=True)
    user_name = Column(String(255), nullable=False)
    user_id = Column(String(255))
    converted_leads = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
