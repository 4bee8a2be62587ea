from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from leadsync.errors import StoreError
from leadsync.filter_engine import SORT_KEYS
from leadsync.logging_config import get_logger
from leadsync.models import (
    Actor,
    AssignRequest,
    CallbackRequest,
    FilterState,
    HistoryEntry,
    LeadView,
    NoteRequest,
    SortDirection,
    StatusChangeRequest,
)
from leadsync.mutations import MutationOutcome, PayloadCapture, StatusCapture
from leadsync.routers.deps import get_services
from leadsync.security import get_actor, verify_api_key
from leadsync.services import PipelineServices

logger = get_logger(__name__)

router = APIRouter(
    prefix="/pipelines/{pipeline}/leads",
    tags=["Leads"],
    dependencies=[Depends(verify_api_key)],
)


def filter_params(
    source: Optional[str] = None,
    status: Optional[str] = None,
    assignee: Optional[str] = None,
    unassigned_only: bool = False,
    my_leads: bool = False,
    converted: Optional[bool] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    sort_key: Optional[str] = None,
    sort_direction: SortDirection = SortDirection.DESCENDING,
    view: LeadView = LeadView.ALL,
) -> FilterState:
    """Filter state from query parameters."""
    if sort_key is not None and sort_key not in SORT_KEYS:
        raise HTTPException(status_code=422, detail=f"Unsupported sort key: {sort_key}")
    return FilterState(
        source=source,
        status=status,
        assignee=assignee,
        unassigned_only=unassigned_only,
        my_leads=my_leads,
        converted=converted,
        date_from=date_from,
        date_to=date_to,
        sort_key=sort_key,
        sort_direction=sort_direction,
        view=view,
    )


def outcome_response(outcome: MutationOutcome) -> dict:
    if not outcome.allowed:
        raise HTTPException(status_code=403, detail={"reason": outcome.reason})
    if not outcome.applied:
        raise HTTPException(status_code=422, detail={"reason": outcome.reason})
    return {"applied": True, "lead": outcome.lead}


# GET /pipelines/{pipeline}/leads?status=Interested&sort_key=name&cursor=50
# Gets: filter query params (source, status, assignee, unassigned_only, my_leads,
#       converted, date_from, date_to, sort_key, sort_direction, view) + cursor
# Returns: {leads, next_cursor, has_more, client_filters}; 503 if the first page fails
# Example:
#   curl -H 'X-Actor-Name: Priya' -H 'X-Actor-Role: sales' \
#        'http://localhost:8000/pipelines/ama/leads?my_leads=true'
@router.get("")
async def list_leads(
    cursor: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1, le=500),
    filter_state: FilterState = Depends(filter_params),
    actor: Actor = Depends(get_actor),
    services: PipelineServices = Depends(get_services),
):
    """One browse page, filtered and sorted."""
    try:
        page = await services.composer.fetch_page(filter_state, actor, cursor, limit)
    except StoreError as e:
        if cursor is None:
            logger.error("initial_page_load_failed", pipeline=services.pipeline.name, error=str(e))
            raise HTTPException(status_code=503, detail="failed to load") from e
        raise

    leads = services.engine.apply(page.leads, filter_state, actor, client_filters=page.client_filters)
    return {
        "leads": leads,
        "next_cursor": page.next_cursor,
        "has_more": page.has_more,
        "client_filters": page.client_filters,
    }


# GET /pipelines/{pipeline}/leads/search?q=asha
# Gets: q (search term) + the same filter params as the list endpoint
# Returns: {leads, failed_fields}; ranked by relevance unless a sort is chosen
# Example:
#   curl -H 'X-Actor-Name: Admin' -H 'X-Actor-Role: admin' \
#        'http://localhost:8000/pipelines/crm/leads/search?q=98765'
@router.get("/search")
async def search_leads(
    q: str = Query(..., min_length=1),
    filter_state: FilterState = Depends(filter_params),
    actor: Actor = Depends(get_actor),
    services: PipelineServices = Depends(get_services),
):
    """Full-text search over name, email and phone."""
    result = await services.composer.search(q)
    if filter_state.sort_key is None and filter_state.view == LeadView.ALL:
        leads = services.engine.filter(result.leads, filter_state, actor)
    else:
        leads = services.engine.apply(result.leads, filter_state, actor)
    return {"leads": leads, "failed_fields": result.failed_fields}


# GET /pipelines/{pipeline}/leads/{lead_id}/history
# Gets: path params pipeline, lead_id
# Returns: JSON array of HistoryEntry objects, newest first
# Example:
#   curl -H 'X-Actor-Name: Admin' -H 'X-Actor-Role: admin' \
#        http://localhost:8000/pipelines/ama/leads/abc123/history
@router.get("/{lead_id}/history", response_model=list[HistoryEntry])
async def lead_history(
    lead_id: str,
    actor: Actor = Depends(get_actor),
    services: PipelineServices = Depends(get_services),
):
    """Notes and assignment changes for one lead."""
    return await services.mutations.history(lead_id)


# POST /pipelines/{pipeline}/leads/{lead_id}/notes
# Gets: JSON body {text}
# Returns: {applied, lead}; 403 {reason} when not permitted
# Example:
#   curl -X POST -H 'Content-Type: application/json' \
#        -H 'X-Actor-Name: Priya' -H 'X-Actor-Role: sales' \
#        -d '{"text": "Asked to call back after salary"}' \
#        http://localhost:8000/pipelines/ama/leads/abc123/notes
@router.post("/{lead_id}/notes")
async def save_note(
    lead_id: str,
    body: NoteRequest,
    actor: Actor = Depends(get_actor),
    services: PipelineServices = Depends(get_services),
):
    """Save a note on a lead."""
    return outcome_response(await services.mutations.save_note(actor, lead_id, body.text))


# POST /pipelines/{pipeline}/leads/{lead_id}/status
# Gets: JSON body {status, callback_at?, language?, confirm}
#       Follow-up, language barrier and converted need confirm=true (plus
#       callback_at / language respectively), otherwise the change is cancelled.
# Returns: {applied, lead}; 403 {reason} / 422 {reason}
# Example:
#   curl -X POST -H 'Content-Type: application/json' \
#        -H 'X-Actor-Name: Priya' -H 'X-Actor-Role: sales' \
#        -d '{"status": "Callback", "callback_at": "2026-10-18T11:00:00+05:30", "confirm": true}' \
#        http://localhost:8000/pipelines/ama/leads/abc123/status
@router.post("/{lead_id}/status")
async def change_status(
    lead_id: str,
    body: StatusChangeRequest,
    actor: Actor = Depends(get_actor),
    services: PipelineServices = Depends(get_services),
):
    """Change a lead's status."""
    capture = PayloadCapture(
        StatusCapture(callback_at=body.callback_at, language=body.language, confirmed=body.confirm)
    )
    try:
        outcome = await services.mutations.change_status(actor, lead_id, body.status, capture)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return outcome_response(outcome)


# POST /pipelines/{pipeline}/leads/{lead_id}/assign
# Gets: JSON body {assignee_name, assignee_id?}
# Returns: {applied, lead}; 403 {reason} when not permitted
# Example:
#   curl -X POST -H 'Content-Type: application/json' \
#        -H 'X-Actor-Name: Admin' -H 'X-Actor-Role: admin' \
#        -d '{"assignee_name": "Priya", "assignee_id": "u42"}' \
#        http://localhost:8000/pipelines/ama/leads/abc123/assign
@router.post("/{lead_id}/assign")
async def assign_lead(
    lead_id: str,
    body: AssignRequest,
    actor: Actor = Depends(get_actor),
    services: PipelineServices = Depends(get_services),
):
    """Assign a lead to an operator."""
    assignee = Actor(name=body.assignee_name.strip(), role=actor.role, id=body.assignee_id)
    return outcome_response(await services.mutations.assign(actor, lead_id, assignee))


# POST /pipelines/{pipeline}/leads/{lead_id}/unassign
# Gets: nothing
# Returns: {applied, lead}; 403 {reason} when not permitted
# Example:
#   curl -X POST -H 'X-Actor-Name: Priya' -H 'X-Actor-Role: sales' \
#        http://localhost:8000/pipelines/ama/leads/abc123/unassign
@router.post("/{lead_id}/unassign")
async def unassign_lead(
    lead_id: str,
    actor: Actor = Depends(get_actor),
    services: PipelineServices = Depends(get_services),
):
    """Remove a lead's owner."""
    return outcome_response(await services.mutations.unassign(actor, lead_id))


# POST /pipelines/{pipeline}/leads/{lead_id}/callback
# Gets: JSON body {scheduled_at}
# Returns: {applied, lead}; 403 {reason} when not permitted
# Example:
#   curl -X POST -H 'Content-Type: application/json' \
#        -H 'X-Actor-Name: Priya' -H 'X-Actor-Role: sales' \
#        -d '{"scheduled_at": "2026-10-19T10:00:00+05:30"}' \
#        http://localhost:8000/pipelines/ama/leads/abc123/callback
@router.post("/{lead_id}/callback")
async def schedule_callback(
    lead_id: str,
    body: CallbackRequest,
    actor: Actor = Depends(get_actor),
    services: PipelineServices = Depends(get_services),
):
    """Schedule or move the lead's callback."""
    return outcome_response(await services.mutations.schedule_callback(actor, lead_id, body.scheduled_at))
