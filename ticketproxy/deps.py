from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from .db import get_db
from .pricing import HospitalityResolver, MarkupResolver
from .proxy import ProxyEngine
from .repositories import HospitalityRepository, MarkupRuleRepository, TicketMarkupRepository

__all__ = [
    "get_admin_user_id",
    "get_db",
    "get_hospitality_repository",
    "get_hospitality_resolver",
    "get_markup_resolver",
    "get_markup_rule_repository",
    "get_proxy_engine",
    "get_ticket_markup_repository",
    "parse_int_header",
]


def parse_int_header(value: Optional[str]) -> Optional[int]:
    """
    Safely parse an int from a header value, or return None if missing/invalid.
    """
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def get_proxy_engine(request: Request) -> ProxyEngine:
    engine = getattr(request.app.state, "proxy_engine", None)
    if engine is None:
        raise RuntimeError("Proxy engine not initialized (lifespan did not run?)")
    return engine


def get_admin_user_id(x_admin_user_id: Optional[str] = Header(None)) -> Optional[int]:
    # Set by the admin auth layer in front of this service.
    return parse_int_header(x_admin_user_id)


def get_markup_rule_repository(db: Session = Depends(get_db)) -> MarkupRuleRepository:
    return MarkupRuleRepository(db)


def get_ticket_markup_repository(db: Session = Depends(get_db)) -> TicketMarkupRepository:
    return TicketMarkupRepository(db)


def get_hospitality_repository(db: Session = Depends(get_db)) -> HospitalityRepository:
    return HospitalityRepository(db)


def get_markup_resolver(
    rules: MarkupRuleRepository = Depends(get_markup_rule_repository),
    legacy: TicketMarkupRepository = Depends(get_ticket_markup_repository),
) -> MarkupResolver:
    return MarkupResolver(rules, legacy)


def get_hospitality_resolver(
    repo: HospitalityRepository = Depends(get_hospitality_repository),
) -> HospitalityResolver:
    return HospitalityResolver(repo, repo)
