from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from .hierarchy import (
    HIERARCHY,
    LEVEL_FIELD,
    MOST_SPECIFIC_FIRST,
    Level,
    LookupContext,
    rule_applies,
)

logger = logging.getLogger("ticketproxy.pricing")

SOURCE_RULE = "rule"
SOURCE_LEGACY = "legacy"

MARKUP_FIXED = "fixed"
MARKUP_PERCENTAGE = "percentage"

# levels that are shared by every ticket of one event
EVENT_SHARED_LEVELS = tuple(level for level in MOST_SPECIFIC_FIRST if level is not Level.TICKET)


class MarkupRuleStore(Protocol):
    def find_rule(self, level: Level, ctx: LookupContext) -> Optional[Any]: ...


class LegacyMarkupStore(Protocol):
    def get_markup_by_ticket(self, ticket_id: str) -> Optional[Any]: ...

    def get_markups_by_event(self, event_id: str) -> Sequence[Any]: ...


class AssignmentStore(Protocol):
    def find_assignments(self, level: Level, ctx: LookupContext) -> Sequence[Any]: ...


class LegacyHospitalityStore(Protocol):
    def get_ticket_hospitalities(self, event_id: Optional[str], ticket_id: str) -> Sequence[Any]: ...

    def get_event_hospitalities(self, event_id: str) -> Sequence[Any]: ...


def _money(value: Optional[float]) -> Optional[float]:
    return None if value is None else round(float(value), 2)


def compute_price(
    markup_type: str,
    amount: float,
    base_price_usd: Optional[float],
) -> Tuple[Optional[float], Optional[float]]:
    """Return (markup_price_usd, final_price_usd) for a base price."""
    amount = float(amount or 0)
    if markup_type == MARKUP_PERCENTAGE:
        if base_price_usd is None:
            return None, None
        markup = round(base_price_usd * amount / 100, 2)
    else:
        markup = round(amount, 2)
        if base_price_usd is None:
            return markup, None
    return markup, round(base_price_usd + markup, 2)


def _names(row: Any) -> Dict[str, Any]:
    return {
        "sport_name": getattr(row, "sport_name", None),
        "tournament_name": getattr(row, "tournament_name", None),
        "team_name": getattr(row, "team_name", None),
        "event_name": getattr(row, "event_name", None),
        "ticket_name": getattr(row, "ticket_name", None),
    }


def _scope(row: Any) -> Dict[str, Any]:
    return {LEVEL_FIELD[level]: getattr(row, LEVEL_FIELD[level], None) for level in HIERARCHY}


def format_rule(rule: Any, level: Level, base_price_usd: Optional[float]) -> Dict[str, Any]:
    amount = float(rule.markup_amount or 0)
    markup_price, final_price = compute_price(rule.markup_type, amount, base_price_usd)
    result = {
        "level": level.value,
        "source": SOURCE_RULE,
        "rule_id": rule.id,
        "markup_type": rule.markup_type,
        "markup_amount": amount,
        "markup_price_usd": markup_price,
        "markup_percentage": amount if rule.markup_type == MARKUP_PERCENTAGE else None,
        "base_price_usd": _money(base_price_usd),
        "final_price_usd": final_price,
    }
    result.update(_scope(rule))
    result.update(_names(rule))
    return result


def format_legacy(markup: Any) -> Dict[str, Any]:
    percentage = markup.markup_percentage
    if markup.markup_type == MARKUP_PERCENTAGE and percentage is not None:
        amount = float(percentage)
    else:
        amount = float(markup.markup_price_usd or 0)
    return {
        "level": Level.TICKET.value,
        "source": SOURCE_LEGACY,
        "rule_id": markup.id,
        "markup_type": markup.markup_type,
        "markup_amount": amount,
        "markup_price_usd": _money(markup.markup_price_usd),
        "markup_percentage": _money(percentage),
        "base_price_usd": _money(markup.base_price_usd),
        "final_price_usd": _money(markup.final_price_usd),
        "event_id": markup.event_id,
        "ticket_id": markup.ticket_id,
    }


class MarkupResolver:
    """
    Most-specific-wins markup lookup.

    Rules are probed ticket -> event -> team -> tournament -> sport; the
    flat legacy ticket_markups table is only consulted when no rule matches.
    """

    def __init__(self, rules: MarkupRuleStore, legacy: LegacyMarkupStore) -> None:
        self.rules = rules
        self.legacy = legacy

    def _probe(self, levels: Iterable[Level], ctx: LookupContext) -> Optional[Tuple[Level, Any]]:
        for level in levels:
            if ctx.get(level) is None:
                continue
            rule = self.rules.find_rule(level, ctx)
            if rule is not None and rule.is_active and rule_applies(rule, ctx, level):
                return level, rule
        return None

    def resolve_markup(self, ctx: LookupContext) -> Optional[Dict[str, Any]]:
        ctx.require_ticket()

        hit = self._probe(MOST_SPECIFIC_FIRST, ctx)
        if hit is not None:
            level, rule = hit
            logger.debug("Markup for ticket %s resolved at %s level (rule %s)", ctx.ticket_id, level.value, rule.id)
            return format_rule(rule, level, ctx.base_price_usd)

        legacy = self.legacy.get_markup_by_ticket(ctx.ticket_id)
        if legacy is not None and (ctx.event_id is None or legacy.event_id == ctx.event_id):
            logger.debug("Markup for ticket %s resolved from legacy table", ctx.ticket_id)
            return format_legacy(legacy)

        return None

    def resolve_markups_for_event(
        self,
        ctx: LookupContext,
        ticket_ids: Sequence[str],
    ) -> Dict[str, Optional[Dict[str, Any]]]:
        """
        Resolve every ticket of one event. Coarse levels are looked up once
        and shared; only the ticket level is probed per ticket.
        """
        ctx.require_event()

        shared = self._probe(EVENT_SHARED_LEVELS, ctx)
        legacy_by_ticket: Dict[str, Any] = {}
        for row in self.legacy.get_markups_by_event(ctx.event_id):
            legacy_by_ticket.setdefault(row.ticket_id, row)

        results: Dict[str, Optional[Dict[str, Any]]] = {}
        for ticket_id in ticket_ids:
            ticket_ctx = ctx.for_ticket(ticket_id)
            if ticket_ctx.ticket_id is None:
                continue
            hit = self._probe((Level.TICKET,), ticket_ctx) or shared
            if hit is not None:
                level, rule = hit
                results[ticket_ctx.ticket_id] = format_rule(rule, level, ctx.base_price_usd)
            elif ticket_ctx.ticket_id in legacy_by_ticket:
                results[ticket_ctx.ticket_id] = format_legacy(legacy_by_ticket[ticket_ctx.ticket_id])
            else:
                results[ticket_ctx.ticket_id] = None

        logger.debug(
            "Resolved markups for event %s: %d tickets, %d with markup",
            ctx.event_id,
            len(results),
            sum(1 for r in results.values() if r is not None),
        )
        return results


def format_assignment(assignment: Any, level: Level) -> Dict[str, Any]:
    service = assignment.hospitality
    result = {
        "assignment_id": assignment.id,
        "hospitality_id": assignment.hospitality_id,
        "name": service.name,
        "description": service.description,
        "sort_order": service.sort_order,
        "level": level.value,
        "source": SOURCE_RULE,
    }
    result.update(_scope(assignment))
    return result


def format_ticket_hospitality(link: Any) -> Dict[str, Any]:
    service = link.hospitality
    return {
        "assignment_id": None,
        "hospitality_id": link.hospitality_id,
        "name": service.name,
        "description": service.description,
        "sort_order": service.sort_order,
        "custom_price_usd": _money(link.custom_price_usd),
        "level": Level.TICKET.value,
        "source": SOURCE_LEGACY,
        "event_id": link.event_id,
        "ticket_id": link.ticket_id,
    }


class HospitalityResolver:
    """
    Hospitality services are additive: a ticket gets the union of what is
    assigned at each level. A service assigned at several levels is listed
    once, tagged with the most specific one.
    """

    def __init__(self, assignments: AssignmentStore, legacy: LegacyHospitalityStore) -> None:
        self.assignments = assignments
        self.legacy = legacy

    def _collect(self, levels: Iterable[Level], ctx: LookupContext) -> List[Tuple[Level, Any]]:
        found: List[Tuple[Level, Any]] = []
        for level in levels:
            if ctx.get(level) is None:
                continue
            rows = [
                a for a in self.assignments.find_assignments(level, ctx)
                if a.is_active
                and a.hospitality is not None
                and a.hospitality.is_active
                and rule_applies(a, ctx, level)
            ]
            rows.sort(key=lambda a: (a.hospitality.sort_order or 0, a.hospitality.name or ""))
            found.extend((level, a) for a in rows)
        return found

    def _merge(self, matches: Iterable[Tuple[Level, Any]], legacy_links: Iterable[Any]) -> List[Dict[str, Any]]:
        # matches arrive most specific first, so the first hit per service wins
        seen = set()
        items: List[Dict[str, Any]] = []
        for level, assignment in matches:
            if assignment.hospitality_id in seen:
                continue
            seen.add(assignment.hospitality_id)
            items.append(format_assignment(assignment, level))

        for link in legacy_links:
            if link.hospitality_id in seen or link.hospitality is None or not link.hospitality.is_active:
                continue
            seen.add(link.hospitality_id)
            items.append(format_ticket_hospitality(link))
        return items

    def resolve_for_ticket(self, ctx: LookupContext) -> List[Dict[str, Any]]:
        ctx.require_ticket()
        matches = self._collect(MOST_SPECIFIC_FIRST, ctx)
        legacy = self.legacy.get_ticket_hospitalities(ctx.event_id, ctx.ticket_id)
        items = self._merge(matches, legacy)
        logger.debug("Resolved %d hospitalities for ticket %s", len(items), ctx.ticket_id)
        return items

    def resolve_for_event(self, ctx: LookupContext, ticket_ids: Sequence[str]) -> Dict[str, List[Dict[str, Any]]]:
        ctx.require_event()

        shared = self._collect(EVENT_SHARED_LEVELS, ctx)
        legacy_by_ticket: Dict[str, List[Any]] = {}
        for link in self.legacy.get_event_hospitalities(ctx.event_id):
            legacy_by_ticket.setdefault(link.ticket_id, []).append(link)

        results: Dict[str, List[Dict[str, Any]]] = {}
        for ticket_id in ticket_ids:
            ticket_ctx = ctx.for_ticket(ticket_id)
            if ticket_ctx.ticket_id is None:
                continue
            matches = self._collect((Level.TICKET,), ticket_ctx) + shared
            results[ticket_ctx.ticket_id] = self._merge(matches, legacy_by_ticket.get(ticket_ctx.ticket_id, []))
        return results
