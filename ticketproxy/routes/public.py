"""
Customer-facing pricing endpoints. Responses are cacheable by browsers and
CDNs for a few minutes.

These are registered ahead of the /v1 catch-all proxy route so they are
answered locally instead of being forwarded upstream.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends

from ..deps import (
    get_hospitality_repository,
    get_hospitality_resolver,
    get_markup_resolver,
    get_ticket_markup_repository,
)
from ..errors import ValidationError
from ..pricing import HospitalityResolver, LookupContext, MarkupResolver
from ..repositories.hospitality import HospitalityRepository, service_to_dict, ticket_link_to_dict
from ..repositories.markup_rules import TicketMarkupRepository, ticket_markup_to_dict
from ..responses import SERVICES_MAX_AGE, cached, envelope

logger = logging.getLogger("ticketproxy.pricing")

router = APIRouter(prefix="/v1", tags=["public"])


def _ticket_ids(raw: Optional[str]) -> List[str]:
    if not raw:
        raise ValidationError("ticket_ids query parameter is required")
    ids = list(dict.fromkeys(part.strip() for part in raw.split(",") if part.strip()))
    if not ids:
        raise ValidationError("ticket_ids query parameter is required")
    return ids


def _context(
    event_id: str,
    sport_type: Optional[str],
    tournament_id: Optional[str],
    team_id: Optional[str],
    ticket_id: Optional[str] = None,
    base_price_usd: Optional[str] = None,
) -> LookupContext:
    return LookupContext.from_mapping({
        "sport_type": sport_type,
        "tournament_id": tournament_id,
        "team_id": team_id,
        "event_id": event_id,
        "ticket_id": ticket_id,
        "base_price_usd": base_price_usd,
    })


@router.get("/events/{event_id}/markups")
def event_markups(event_id: str, repo: TicketMarkupRepository = Depends(get_ticket_markup_repository)):
    rows = repo.get_markups_by_event(event_id)
    return cached(envelope({"event_id": event_id, "markups": [ticket_markup_to_dict(r) for r in rows]}))


@router.get("/tickets/{ticket_id}/markup")
def ticket_markup(ticket_id: str, repo: TicketMarkupRepository = Depends(get_ticket_markup_repository)):
    row = repo.get_markup_by_ticket(ticket_id)
    return cached(envelope(ticket_markup_to_dict(row) if row else None))


@router.get("/events/{event_id}/effective-markups")
def effective_markups(
    event_id: str,
    sport_type: Optional[str] = None,
    tournament_id: Optional[str] = None,
    team_id: Optional[str] = None,
    ticket_ids: Optional[str] = None,
    base_price_usd: Optional[str] = None,
    resolver: MarkupResolver = Depends(get_markup_resolver),
):
    ctx = _context(event_id, sport_type, tournament_id, team_id, base_price_usd=base_price_usd)
    ctx.require_event()
    markups = resolver.resolve_markups_for_event(ctx, _ticket_ids(ticket_ids))
    return cached(envelope({"event_id": event_id, "markups": markups}))


@router.get("/events/{event_id}/tickets/{ticket_id}/effective-markup")
def effective_markup(
    event_id: str,
    ticket_id: str,
    sport_type: Optional[str] = None,
    tournament_id: Optional[str] = None,
    team_id: Optional[str] = None,
    base_price_usd: Optional[str] = None,
    resolver: MarkupResolver = Depends(get_markup_resolver),
):
    ctx = _context(event_id, sport_type, tournament_id, team_id, ticket_id, base_price_usd)
    return cached(envelope(resolver.resolve_markup(ctx)))


@router.get("/events/{event_id}/hospitalities")
def event_hospitalities(event_id: str, repo: HospitalityRepository = Depends(get_hospitality_repository)):
    links = repo.get_event_hospitalities(event_id)
    return cached(envelope([ticket_link_to_dict(link) for link in links]))


@router.get("/tickets/{ticket_id}/hospitalities")
def ticket_hospitalities(
    ticket_id: str,
    event_id: Optional[str] = None,
    repo: HospitalityRepository = Depends(get_hospitality_repository),
):
    if not event_id:
        raise ValidationError("event_id query parameter is required")
    links = repo.get_ticket_hospitalities(event_id, ticket_id)
    return cached(envelope({
        "ticket_id": ticket_id,
        "event_id": event_id,
        "hospitalities": [ticket_link_to_dict(link) for link in links],
    }))


@router.get("/events/{event_id}/effective-hospitalities")
def effective_hospitalities(
    event_id: str,
    sport_type: Optional[str] = None,
    tournament_id: Optional[str] = None,
    team_id: Optional[str] = None,
    ticket_ids: Optional[str] = None,
    resolver: HospitalityResolver = Depends(get_hospitality_resolver),
):
    ctx = _context(event_id, sport_type, tournament_id, team_id)
    ctx.require_event()
    hospitalities = resolver.resolve_for_event(ctx, _ticket_ids(ticket_ids))
    return cached(envelope({"event_id": event_id, "hospitalities": hospitalities}))


@router.get("/events/{event_id}/tickets/{ticket_id}/effective-hospitalities")
def effective_ticket_hospitalities(
    event_id: str,
    ticket_id: str,
    sport_type: Optional[str] = None,
    tournament_id: Optional[str] = None,
    team_id: Optional[str] = None,
    resolver: HospitalityResolver = Depends(get_hospitality_resolver),
):
    ctx = _context(event_id, sport_type, tournament_id, team_id, ticket_id)
    items = resolver.resolve_for_ticket(ctx)
    return cached(envelope(items, count=len(items)))


@router.get("/hospitalities")
def active_hospitalities(repo: HospitalityRepository = Depends(get_hospitality_repository)):
    services = repo.list_services(active_only=True)
    return cached(envelope([service_to_dict(s) for s in services]), SERVICES_MAX_AGE)
