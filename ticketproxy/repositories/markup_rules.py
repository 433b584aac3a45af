from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import case, or_
from sqlalchemy.orm import Query, Session

from ..errors import NotFoundError, ValidationError
from ..models import NAME_FIELDS, SCOPE_FIELDS, MarkupRule, TicketMarkup
from ..pricing.hierarchy import HIERARCHY, LEVEL_FIELD, Level, LookupContext, normalize_scope, validate_scope
from ..pricing.resolver import MARKUP_FIXED, MARKUP_PERCENTAGE, compute_price

logger = logging.getLogger("ticketproxy.admin")

MARKUP_TYPES = (MARKUP_FIXED, MARKUP_PERCENTAGE)
MAX_PERCENTAGE = 1000
LIST_FILTERS = ("level", "sport_type", "tournament_id", "team_id", "event_id")


def level_order(column: Any) -> Any:
    """ORDER BY expression putting sport first and ticket last."""
    return case(
        {level.value: i for i, level in enumerate(HIERARCHY)},
        value=column,
        else_=len(HIERARCHY),
    )


def scope_filter(query: Query, model: Any, scope: Mapping[str, Optional[str]]) -> Query:
    """Exact scope match where NULL only equals NULL."""
    for name in SCOPE_FIELDS:
        column = getattr(model, name)
        value = scope.get(name)
        query = query.filter(column.is_(None) if value is None else column == value)
    return query


def context_filter(query: Query, model: Any, level: Level, ctx: LookupContext) -> Query:
    """SQL twin of rule_applies: own id equal, coarser ids equal or unset on either side, finer ids NULL."""
    idx = HIERARCHY.index(level)
    for i, current in enumerate(HIERARCHY):
        column = getattr(model, LEVEL_FIELD[current])
        value = ctx.get(current)
        if i == idx:
            query = query.filter(column == value)
        elif i < idx:
            if value is not None:
                query = query.filter(or_(column.is_(None), column == value))
        else:
            query = query.filter(column.is_(None))
    return query


def paginate(query: Query, page: int, per_page: int) -> Tuple[List[Any], Dict[str, Any]]:
    page = max(int(page or 1), 1)
    per_page = max(int(per_page or 50), 1)
    total = query.order_by(None).count()
    total_pages = math.ceil(total / per_page) if total else 0
    rows = query.limit(per_page).offset((page - 1) * per_page).all()
    return rows, {
        "current_page": page,
        "per_page": per_page,
        "total_records": total,
        "total_pages": total_pages,
        "has_more": page < total_pages,
    }


def check_markup(markup_type: str, amount: Any) -> float:
    if markup_type not in MARKUP_TYPES:
        raise ValidationError("markup_type must be 'fixed' or 'percentage'")
    try:
        amount = float(amount)
    except (TypeError, ValueError):
        raise ValidationError("markup_amount must be numeric")
    if amount < 0:
        raise ValidationError("markup_amount must be >= 0")
    if markup_type == MARKUP_PERCENTAGE and amount > MAX_PERCENTAGE:
        raise ValidationError(f"percentage markup cannot exceed {MAX_PERCENTAGE}")
    return amount


def rule_to_dict(rule: MarkupRule) -> Dict[str, Any]:
    data = {
        "id": rule.id,
        "level": rule.level,
        "markup_type": rule.markup_type,
        "markup_amount": float(rule.markup_amount or 0),
        "is_active": bool(rule.is_active),
        "created_by": rule.created_by,
        "updated_by": rule.updated_by,
        "created_at": rule.created_at.isoformat() if rule.created_at else None,
        "updated_at": rule.updated_at.isoformat() if rule.updated_at else None,
    }
    for name in SCOPE_FIELDS + NAME_FIELDS:
        data[name] = getattr(rule, name)
    return data


def ticket_markup_to_dict(row: TicketMarkup) -> Dict[str, Any]:
    return {
        "id": row.id,
        "event_id": row.event_id,
        "ticket_id": row.ticket_id,
        "markup_type": row.markup_type,
        "markup_price_usd": row.markup_price_usd,
        "markup_percentage": row.markup_percentage,
        "base_price_usd": row.base_price_usd,
        "final_price_usd": row.final_price_usd,
        "created_by": row.created_by,
        "updated_by": row.updated_by,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


class MarkupRuleRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _by_scope(self, scope: Mapping[str, Optional[str]]) -> Optional[MarkupRule]:
        return scope_filter(self.db.query(MarkupRule), MarkupRule, scope).one_or_none()

    def upsert_rule(self, data: Mapping[str, Any], admin_id: Optional[int] = None) -> Tuple[MarkupRule, bool]:
        """
        Create the rule for a scope, or update the one already there.
        Returns (rule, created).
        """
        scope = normalize_scope(data)
        level = validate_scope(scope)
        markup_type = data.get("markup_type") or MARKUP_FIXED
        amount = check_markup(markup_type, data.get("markup_amount", 0))

        rule = self._by_scope(scope)
        created = rule is None
        if created:
            rule = MarkupRule(level=level.value, created_by=admin_id, **scope)
            self.db.add(rule)

        rule.markup_type = markup_type
        rule.markup_amount = amount
        rule.is_active = bool(data.get("is_active", True))
        rule.updated_by = admin_id
        for name in NAME_FIELDS:
            if name in data:
                setattr(rule, name, data[name])

        self.db.commit()
        self.db.refresh(rule)
        logger.info(
            "Markup rule %s at %s level (rule_id=%s, admin_user_id=%s)",
            "created" if created else "updated",
            level.value,
            rule.id,
            admin_id,
        )
        return rule, created

    def get_rule(self, rule_id: int) -> MarkupRule:
        rule = self.db.get(MarkupRule, rule_id)
        if rule is None:
            raise NotFoundError("Markup rule not found")
        return rule

    def update_rule(self, rule_id: int, data: Mapping[str, Any], admin_id: Optional[int] = None) -> MarkupRule:
        rule = self.get_rule(rule_id)
        markup_type = data.get("markup_type") or rule.markup_type
        amount = check_markup(markup_type, data.get("markup_amount", rule.markup_amount))

        rule.markup_type = markup_type
        rule.markup_amount = amount
        if data.get("is_active") is not None:
            rule.is_active = bool(data["is_active"])
        rule.updated_by = admin_id

        self.db.commit()
        self.db.refresh(rule)
        logger.info("Markup rule updated (rule_id=%s, admin_user_id=%s)", rule_id, admin_id)
        return rule

    def delete_rule(self, rule_id: int) -> None:
        rule = self.get_rule(rule_id)
        self.db.delete(rule)
        self.db.commit()
        logger.info("Markup rule deleted (rule_id=%s)", rule_id)

    def list_rules(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        page: int = 1,
        per_page: int = 50,
    ) -> Tuple[List[MarkupRule], Dict[str, Any]]:
        filters = filters or {}
        query = self.db.query(MarkupRule)
        for name in LIST_FILTERS:
            if filters.get(name):
                query = query.filter(getattr(MarkupRule, name) == filters[name])
        if filters.get("is_active") is not None:
            query = query.filter(MarkupRule.is_active == bool(filters["is_active"]))

        query = query.order_by(
            level_order(MarkupRule.level),
            MarkupRule.sport_name,
            MarkupRule.tournament_name,
            MarkupRule.team_name,
            MarkupRule.event_name,
            MarkupRule.ticket_name,
            MarkupRule.updated_at.desc(),
        )
        return paginate(query, page, per_page)

    def rules_by_sport(self, sport_type: str) -> List[MarkupRule]:
        return (
            self.db.query(MarkupRule)
            .filter(MarkupRule.sport_type == sport_type)
            .order_by(level_order(MarkupRule.level), MarkupRule.updated_at.desc(), MarkupRule.id.desc())
            .all()
        )

    # -------------------------
    # Resolver store
    # -------------------------
    def find_rules(self, level: Level, ctx: LookupContext) -> List[MarkupRule]:
        """Active rules at one level that match the context, newest first."""
        query = self.db.query(MarkupRule).filter(
            MarkupRule.level == level.value,
            MarkupRule.is_active.is_(True),
        )
        # coarser ids match when set on both sides, finer ids must be NULL
        query = context_filter(query, MarkupRule, level, ctx)
        return query.order_by(MarkupRule.updated_at.desc(), MarkupRule.id.desc()).all()

    def find_rule(self, level: Level, ctx: LookupContext) -> Optional[MarkupRule]:
        if ctx.get(level) is None:
            return None
        rules = self.find_rules(level, ctx)
        return rules[0] if rules else None


class TicketMarkupRepository:
    """Flat per-ticket markups kept for events priced before markup rules."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def batch_upsert(
        self,
        event_id: str,
        rows: Iterable[Mapping[str, Any]],
        admin_id: Optional[int] = None,
    ) -> int:
        count = 0
        try:
            for data in rows:
                ticket_id = str(data.get("ticket_id") or "").strip()
                if not ticket_id:
                    raise ValidationError(f"ticket_id is required for ticket at index {count}")

                markup_type = data.get("markup_type") or MARKUP_FIXED
                try:
                    base = float(data["base_price_usd"])
                except (KeyError, TypeError, ValueError):
                    raise ValidationError(f"base_price_usd must be numeric for ticket at index {count}")
                percentage = data.get("markup_percentage") if markup_type == MARKUP_PERCENTAGE else None
                if markup_type == MARKUP_PERCENTAGE:
                    if percentage is None:
                        raise ValidationError(
                            f"markup_percentage is required when markup_type is 'percentage' for ticket at index {count}"
                        )
                    check_markup(markup_type, percentage)
                    markup, final = compute_price(markup_type, float(percentage), base)
                else:
                    markup = float(data.get("markup_price_usd") or 0)
                    check_markup(markup_type, markup)
                    final = round(base + markup, 2)
                if data.get("final_price_usd") is not None:
                    final = float(data["final_price_usd"])

                row = (
                    self.db.query(TicketMarkup)
                    .filter(TicketMarkup.event_id == event_id, TicketMarkup.ticket_id == ticket_id)
                    .one_or_none()
                )
                if row is None:
                    row = TicketMarkup(event_id=event_id, ticket_id=ticket_id, created_by=admin_id)
                    self.db.add(row)
                row.markup_type = markup_type
                row.markup_percentage = percentage
                row.markup_price_usd = markup
                row.base_price_usd = base
                row.final_price_usd = final
                row.updated_by = admin_id
                count += 1
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Ticket markups saved (event_id=%s, count=%d, admin_user_id=%s)", event_id, count, admin_id)
        return count

    def get_markup_by_ticket(self, ticket_id: str) -> Optional[TicketMarkup]:
        return (
            self.db.query(TicketMarkup)
            .filter(TicketMarkup.ticket_id == ticket_id)
            .order_by(TicketMarkup.updated_at.desc(), TicketMarkup.id.desc())
            .first()
        )

    def get_markups_by_event(self, event_id: str) -> List[TicketMarkup]:
        return (
            self.db.query(TicketMarkup)
            .filter(TicketMarkup.event_id == event_id)
            .order_by(TicketMarkup.ticket_id)
            .all()
        )

    def get_markup(self, markup_id: int) -> TicketMarkup:
        row = self.db.get(TicketMarkup, markup_id)
        if row is None:
            raise NotFoundError("Ticket markup not found")
        return row

    def delete_by_ticket(self, ticket_id: str) -> int:
        deleted = self.db.query(TicketMarkup).filter(TicketMarkup.ticket_id == ticket_id).delete()
        self.db.commit()
        return deleted

    def delete_by_event(self, event_id: str) -> int:
        deleted = self.db.query(TicketMarkup).filter(TicketMarkup.event_id == event_id).delete()
        self.db.commit()
        return deleted
