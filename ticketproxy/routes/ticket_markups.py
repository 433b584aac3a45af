from __future__ import annotations

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..deps import get_admin_user_id, get_ticket_markup_repository
from ..errors import NotFoundError
from ..repositories.markup_rules import TicketMarkupRepository, ticket_markup_to_dict
from ..responses import envelope

router = APIRouter(prefix="/api/v1/admin/ticket-markups", tags=["ticket-markups"])


class TicketMarkupIn(BaseModel):
    ticket_id: str = Field(..., min_length=1)
    base_price_usd: float
    markup_type: Literal["fixed", "percentage"] = "fixed"
    markup_price_usd: Optional[float] = Field(None, ge=0)
    markup_percentage: Optional[float] = Field(None, ge=0)
    final_price_usd: Optional[float] = None


class TicketMarkupBatchIn(BaseModel):
    event_id: str = Field(..., min_length=1)
    tickets: List[TicketMarkupIn] = Field(..., min_length=1)


@router.post("/batch")
def batch_upsert(
    body: TicketMarkupBatchIn,
    repo: TicketMarkupRepository = Depends(get_ticket_markup_repository),
    admin_id: Optional[int] = Depends(get_admin_user_id),
):
    count = repo.batch_upsert(body.event_id, [t.model_dump() for t in body.tickets], admin_id)
    return envelope(
        {"event_id": body.event_id, "affected_count": count},
        message=f"Successfully updated markup for {count} tickets",
    )


@router.get("/event/{event_id}")
def markups_by_event(event_id: str, repo: TicketMarkupRepository = Depends(get_ticket_markup_repository)):
    rows = repo.get_markups_by_event(event_id)
    return envelope([ticket_markup_to_dict(r) for r in rows], count=len(rows))


@router.get("/ticket/{ticket_id}")
def markup_by_ticket(ticket_id: str, repo: TicketMarkupRepository = Depends(get_ticket_markup_repository)):
    row = repo.get_markup_by_ticket(ticket_id)
    if row is None:
        raise NotFoundError("Markup not found for this ticket")
    return envelope(ticket_markup_to_dict(row))


@router.get("/{markup_id}")
def get_markup(markup_id: int, repo: TicketMarkupRepository = Depends(get_ticket_markup_repository)):
    return envelope(ticket_markup_to_dict(repo.get_markup(markup_id)))


@router.delete("/ticket/{ticket_id}")
def delete_by_ticket(ticket_id: str, repo: TicketMarkupRepository = Depends(get_ticket_markup_repository)):
    if not repo.delete_by_ticket(ticket_id):
        raise NotFoundError("Markup not found for this ticket")
    return {"success": True, "message": "Markup deleted successfully"}


@router.delete("/event/{event_id}")
def delete_by_event(event_id: str, repo: TicketMarkupRepository = Depends(get_ticket_markup_repository)):
    deleted = repo.delete_by_event(event_id)
    return {"success": True, "deleted_count": deleted, "message": f"Deleted {deleted} markups"}
