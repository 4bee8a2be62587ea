"""Exception types raised by the lead engine.

Authorization failures are deliberately absent: the authorization matrix
returns a decision object instead of raising.
"""


class LeadSyncError(Exception):
    """Base class for all engine errors."""


class StoreError(LeadSyncError):
    """The lead store is unreachable or rejected an operation."""


class StoreQueryError(StoreError):
    """A query used a predicate the store cannot serve (unsupported op, missing index)."""


class LeadNotFoundError(StoreError):
    """No lead exists with the requested id."""

    def __init__(self, lead_id: str):
        super().__init__(f"Lead {lead_id} not found")
        self.lead_id = lead_id


class SearchUnavailableError(LeadSyncError):
    """Every predicate of a full-text search failed."""


class LeadWriteError(LeadSyncError):
    """A single-lead mutation failed; local state has already been rolled back."""

    def __init__(self, lead_id: str, message: str):
        super().__init__(f"Failed to update lead {lead_id}: {message}")
        self.lead_id = lead_id


class InvalidBatchError(LeadSyncError):
    """A bulk request is malformed (no targets, unknown template, missing assignee)."""


class UnknownPipelineError(LeadSyncError):
    """The requested pipeline is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Unknown pipeline: {name}")
        self.name = name


class BatchStateError(LeadSyncError):
    """A batch item was moved through an illegal state transition."""
