from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, model_validator

from ..deps import get_admin_user_id, get_markup_resolver, get_markup_rule_repository
from ..pricing import LookupContext, MarkupResolver
from ..repositories.markup_rules import MAX_PERCENTAGE, MarkupRuleRepository, rule_to_dict
from ..responses import envelope

router = APIRouter(prefix="/api/v1/admin/markup-rules", tags=["markup-rules"])


class ScopeIn(BaseModel):
    sport_type: Optional[str] = None
    tournament_id: Optional[str] = None
    team_id: Optional[str] = None
    event_id: Optional[str] = None
    ticket_id: Optional[str] = None


class ScopeNamesIn(ScopeIn):
    sport_name: Optional[str] = None
    tournament_name: Optional[str] = None
    team_name: Optional[str] = None
    event_name: Optional[str] = None
    ticket_name: Optional[str] = None


class MarkupRuleIn(ScopeNamesIn):
    markup_type: Literal["fixed", "percentage"] = "fixed"
    markup_amount: float = Field(..., ge=0)
    is_active: bool = True

    @model_validator(mode="after")
    def _percentage_cap(self):
        if self.markup_type == "percentage" and self.markup_amount > MAX_PERCENTAGE:
            raise ValueError(f"percentage markup cannot exceed {MAX_PERCENTAGE}")
        return self


class MarkupRuleUpdate(BaseModel):
    markup_type: Optional[Literal["fixed", "percentage"]] = None
    markup_amount: float = Field(..., ge=0)
    is_active: Optional[bool] = None


class ResolveIn(ScopeIn):
    base_price_usd: Optional[float] = None


@router.post("")
def create_or_update_rule(
    body: MarkupRuleIn,
    repo: MarkupRuleRepository = Depends(get_markup_rule_repository),
    admin_id: Optional[int] = Depends(get_admin_user_id),
):
    rule, created = repo.upsert_rule(body.model_dump(), admin_id)
    message = "Markup rule created successfully" if created else "Markup rule updated successfully"
    return JSONResponse(
        status_code=201 if created else 200,
        content=envelope(rule_to_dict(rule), message=message),
    )


@router.get("")
def list_rules(
    level: Optional[str] = None,
    sport_type: Optional[str] = None,
    tournament_id: Optional[str] = None,
    team_id: Optional[str] = None,
    event_id: Optional[str] = None,
    is_active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    repo: MarkupRuleRepository = Depends(get_markup_rule_repository),
):
    filters = {
        "level": level,
        "sport_type": sport_type,
        "tournament_id": tournament_id,
        "team_id": team_id,
        "event_id": event_id,
        "is_active": is_active,
    }
    rules, pagination = repo.list_rules(filters, page, per_page)
    return envelope([rule_to_dict(r) for r in rules], pagination=pagination)


@router.get("/sport/{sport_type}")
def rules_by_sport(sport_type: str, repo: MarkupRuleRepository = Depends(get_markup_rule_repository)):
    rules = repo.rules_by_sport(sport_type)
    return envelope([rule_to_dict(r) for r in rules], count=len(rules))


@router.post("/resolve")
def resolve_markup(body: ResolveIn, resolver: MarkupResolver = Depends(get_markup_resolver)):
    """Preview which markup a ticket would get."""
    resolved = resolver.resolve_markup(LookupContext.from_mapping(body.model_dump()))
    if resolved:
        message = f"Markup resolved at '{resolved['level']}' level (source: {resolved['source']})"
    else:
        message = "No markup rule applies to this ticket"
    return envelope(resolved, message=message)


@router.get("/{rule_id}")
def get_rule(rule_id: int, repo: MarkupRuleRepository = Depends(get_markup_rule_repository)):
    return envelope(rule_to_dict(repo.get_rule(rule_id)))


@router.put("/{rule_id}")
def update_rule(
    rule_id: int,
    body: MarkupRuleUpdate,
    repo: MarkupRuleRepository = Depends(get_markup_rule_repository),
    admin_id: Optional[int] = Depends(get_admin_user_id),
):
    rule = repo.update_rule(rule_id, body.model_dump(exclude_none=True), admin_id)
    return envelope(rule_to_dict(rule), message="Markup rule updated successfully")


@router.delete("/{rule_id}")
def delete_rule(rule_id: int, repo: MarkupRuleRepository = Depends(get_markup_rule_repository)):
    repo.delete_rule(rule_id)
    return {"success": True, "message": "Markup rule deleted successfully"}
