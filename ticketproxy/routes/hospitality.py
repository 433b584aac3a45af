from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..deps import get_admin_user_id, get_hospitality_repository, get_hospitality_resolver
from ..pricing import HospitalityResolver, LookupContext
from ..repositories.hospitality import (
    HospitalityRepository,
    assignment_to_dict,
    service_to_dict,
    ticket_link_to_dict,
)
from ..responses import envelope
from .markup_rules import ScopeIn, ScopeNamesIn

router = APIRouter(prefix="/api/v1/admin/hospitalities", tags=["hospitalities"])
assignments_router = APIRouter(prefix="/api/v1/admin/hospitality-assignments", tags=["hospitality-assignments"])


class HospitalityIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price_usd: Optional[float] = Field(None, ge=0)
    is_active: bool = True
    sort_order: int = 0


class HospitalityUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    price_usd: Optional[float] = Field(None, ge=0)
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class AssignmentIn(ScopeNamesIn):
    hospitality_id: int
    is_active: bool = True


class ScopedIdsIn(ScopeNamesIn):
    hospitality_ids: List[int] = Field(default_factory=list)


class TicketHospitalitiesIn(BaseModel):
    hospitality_ids: List[int] = Field(default_factory=list)


def _scope_query(
    sport_type: Optional[str] = None,
    tournament_id: Optional[str] = None,
    team_id: Optional[str] = None,
    event_id: Optional[str] = None,
    ticket_id: Optional[str] = None,
) -> dict:
    return ScopeIn(
        sport_type=sport_type,
        tournament_id=tournament_id,
        team_id=team_id,
        event_id=event_id,
        ticket_id=ticket_id,
    ).model_dump()


def _parse_ids(raw: Optional[str]) -> List[int]:
    if not raw:
        return []
    return [int(part) for part in raw.split(",") if part.strip().isdigit()]


# -------------------------
# Services
# -------------------------
@router.get("")
def list_services(
    active_only: bool = False,
    repo: HospitalityRepository = Depends(get_hospitality_repository),
):
    services = repo.list_services(active_only)
    return envelope([service_to_dict(s) for s in services], count=len(services))


@router.post("")
def create_service(
    body: HospitalityIn,
    repo: HospitalityRepository = Depends(get_hospitality_repository),
    admin_id: Optional[int] = Depends(get_admin_user_id),
):
    service = repo.create_service(body.model_dump(), admin_id)
    return JSONResponse(
        status_code=201,
        content=envelope(service_to_dict(service), message="Hospitality created successfully"),
    )


@router.get("/stats")
def stats(repo: HospitalityRepository = Depends(get_hospitality_repository)):
    return envelope(repo.stats())


@router.get("/event/{event_id}")
def event_ticket_hospitalities(event_id: str, repo: HospitalityRepository = Depends(get_hospitality_repository)):
    links = repo.get_event_hospitalities(event_id)
    return envelope([ticket_link_to_dict(link) for link in links], count=len(links))


@router.get("/ticket/{event_id}/{ticket_id}")
def ticket_hospitalities(
    event_id: str,
    ticket_id: str,
    repo: HospitalityRepository = Depends(get_hospitality_repository),
):
    links = repo.get_ticket_hospitalities(event_id, ticket_id)
    return envelope([ticket_link_to_dict(link) for link in links], count=len(links))


@router.post("/ticket/{event_id}/{ticket_id}")
def assign_ticket_hospitalities(
    event_id: str,
    ticket_id: str,
    body: TicketHospitalitiesIn,
    repo: HospitalityRepository = Depends(get_hospitality_repository),
    admin_id: Optional[int] = Depends(get_admin_user_id),
):
    deleted, inserted = repo.assign_ticket_hospitalities(event_id, ticket_id, body.hospitality_ids, admin_id)
    return envelope(
        {"deleted_count": deleted, "inserted_count": inserted},
        message=f"Successfully assigned {inserted} hospitalities to ticket",
    )


@router.get("/{service_id}")
def get_service(service_id: int, repo: HospitalityRepository = Depends(get_hospitality_repository)):
    return envelope(service_to_dict(repo.get_service(service_id)))


@router.put("/{service_id}")
def update_service(
    service_id: int,
    body: HospitalityUpdate,
    repo: HospitalityRepository = Depends(get_hospitality_repository),
    admin_id: Optional[int] = Depends(get_admin_user_id),
):
    service = repo.update_service(service_id, body.model_dump(exclude_unset=True), admin_id)
    return envelope(service_to_dict(service), message="Hospitality updated successfully")


@router.delete("/{service_id}")
def delete_service(service_id: int, repo: HospitalityRepository = Depends(get_hospitality_repository)):
    repo.delete_service(service_id)
    return {"success": True, "message": "Hospitality deleted successfully"}


# -------------------------
# Hierarchical assignments
# -------------------------
@assignments_router.get("")
def list_assignments(
    level: Optional[str] = None,
    sport_type: Optional[str] = None,
    tournament_id: Optional[str] = None,
    team_id: Optional[str] = None,
    event_id: Optional[str] = None,
    hospitality_id: Optional[int] = None,
    is_active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    repo: HospitalityRepository = Depends(get_hospitality_repository),
):
    filters = {
        "level": level,
        "sport_type": sport_type,
        "tournament_id": tournament_id,
        "team_id": team_id,
        "event_id": event_id,
        "hospitality_id": hospitality_id,
        "is_active": is_active,
    }
    rows, pagination = repo.list_assignments(filters, page, per_page)
    return envelope([assignment_to_dict(a) for a in rows], pagination=pagination)


@assignments_router.post("")
def create_assignment(
    body: AssignmentIn,
    repo: HospitalityRepository = Depends(get_hospitality_repository),
    admin_id: Optional[int] = Depends(get_admin_user_id),
):
    assignment = repo.upsert_assignment(body.model_dump(), admin_id)
    return JSONResponse(
        status_code=201,
        content=envelope(assignment_to_dict(assignment), message="Hospitality assigned successfully"),
    )


@assignments_router.post("/batch")
def batch_create_assignments(
    body: ScopedIdsIn,
    repo: HospitalityRepository = Depends(get_hospitality_repository),
    admin_id: Optional[int] = Depends(get_admin_user_id),
):
    data = body.model_dump(exclude={"hospitality_ids"})
    rows = repo.batch_upsert_assignments(data, body.hospitality_ids, admin_id)
    return envelope(
        [assignment_to_dict(a) for a in rows],
        count=len(rows),
        message=f"Successfully assigned {len(rows)} hospitality services",
    )


@assignments_router.get("/scope")
def assignments_at_scope(
    scope: dict = Depends(_scope_query),
    repo: HospitalityRepository = Depends(get_hospitality_repository),
):
    rows = repo.assignments_at_scope(scope)
    return envelope([assignment_to_dict(a) for a in rows], count=len(rows))


@assignments_router.put("/scope")
def replace_assignments_at_scope(
    body: ScopedIdsIn,
    repo: HospitalityRepository = Depends(get_hospitality_repository),
    admin_id: Optional[int] = Depends(get_admin_user_id),
):
    data = body.model_dump(exclude={"hospitality_ids"})
    deleted, inserted = repo.replace_assignments_at_scope(data, body.hospitality_ids, admin_id)
    return envelope(
        {"deleted_count": deleted, "inserted_count": inserted},
        message=f"Replaced assignments: removed {deleted}, added {inserted}",
    )


@assignments_router.delete("/scope")
def remove_assignments_at_scope(
    scope: dict = Depends(_scope_query),
    hospitality_ids: Optional[str] = None,
    repo: HospitalityRepository = Depends(get_hospitality_repository),
):
    deleted = repo.remove_assignments_at_scope(scope, _parse_ids(hospitality_ids))
    return {"success": True, "deleted_count": deleted, "message": f"Removed {deleted} assignments"}


@assignments_router.post("/resolve")
def resolve_for_ticket(body: ScopeIn, resolver: HospitalityResolver = Depends(get_hospitality_resolver)):
    items = resolver.resolve_for_ticket(LookupContext.from_mapping(body.model_dump()))
    return envelope(items, count=len(items))


@assignments_router.get("/{assignment_id}")
def get_assignment(assignment_id: int, repo: HospitalityRepository = Depends(get_hospitality_repository)):
    return envelope(assignment_to_dict(repo.get_assignment(assignment_id)))


@assignments_router.delete("/{assignment_id}")
def delete_assignment(assignment_id: int, repo: HospitalityRepository = Depends(get_hospitality_repository)):
    repo.delete_assignment(assignment_id)
    return {"success": True, "message": "Assignment deleted successfully"}
