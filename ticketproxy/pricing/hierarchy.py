from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Mapping, Optional

from ..errors import ValidationError


class Level(str, Enum):
    SPORT = "sport"
    TOURNAMENT = "tournament"
    TEAM = "team"
    EVENT = "event"
    TICKET = "ticket"


# coarsest first
HIERARCHY = (Level.SPORT, Level.TOURNAMENT, Level.TEAM, Level.EVENT, Level.TICKET)
MOST_SPECIFIC_FIRST = tuple(reversed(HIERARCHY))

LEVEL_FIELD = {
    Level.SPORT: "sport_type",
    Level.TOURNAMENT: "tournament_id",
    Level.TEAM: "team_id",
    Level.EVENT: "event_id",
    Level.TICKET: "ticket_id",
}


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass(frozen=True)
class LookupContext:
    """Where a ticket sits in the sport > tournament > team > event > ticket tree."""

    sport_type: Optional[str] = None
    tournament_id: Optional[str] = None
    team_id: Optional[str] = None
    event_id: Optional[str] = None
    ticket_id: Optional[str] = None
    base_price_usd: Optional[float] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "LookupContext":
        base = data.get("base_price_usd")
        try:
            base_price = float(base) if base not in (None, "") else None
        except (TypeError, ValueError):
            raise ValidationError("base_price_usd must be numeric")
        return cls(
            sport_type=_clean(data.get("sport_type")),
            tournament_id=_clean(data.get("tournament_id")),
            team_id=_clean(data.get("team_id")),
            event_id=_clean(data.get("event_id")),
            ticket_id=_clean(data.get("ticket_id")),
            base_price_usd=base_price,
        )

    def get(self, level: Level) -> Optional[str]:
        return getattr(self, LEVEL_FIELD[level])

    def for_ticket(self, ticket_id: str) -> "LookupContext":
        return replace(self, ticket_id=_clean(ticket_id))

    def require_ticket(self) -> None:
        if not self.sport_type or not self.ticket_id:
            raise ValidationError("sport_type and ticket_id are required")

    def require_event(self) -> None:
        if not self.sport_type or not self.event_id:
            raise ValidationError("sport_type and event_id are required")


def determine_level(scope: Mapping[str, Any]) -> Level:
    """The finest level with an id set."""
    for level in MOST_SPECIFIC_FIRST:
        if _clean(scope.get(LEVEL_FIELD[level])):
            return level
    raise ValidationError("At least one hierarchy level identifier must be provided")


def validate_scope(scope: Mapping[str, Any]) -> Level:
    """
    Check a rule/assignment scope before it is written and return its level.

    sport_type is always required and a ticket scope needs its event_id.
    tournament_id and team_id are optional below the sport level, since
    not every sport has teams (or tournaments) above its events.
    """
    if not _clean(scope.get("sport_type")):
        raise ValidationError("sport_type is required")

    level = determine_level(scope)
    if level is Level.TICKET and not _clean(scope.get("event_id")):
        raise ValidationError("ticket_id requires event_id to be set")
    return level


def normalize_scope(scope: Mapping[str, Any]) -> dict:
    return {LEVEL_FIELD[level]: _clean(scope.get(LEVEL_FIELD[level])) for level in HIERARCHY}


def rule_applies(rule: Any, ctx: LookupContext, level: Optional[Level] = None) -> bool:
    """
    True when a rule (or assignment) at `level` matches the lookup context.

    The rule's own level id must equal the context's and finer ids must be
    empty. A coarser id only has to match when both the rule and the
    context carry it; an id missing on either side matches anything.
    """
    level = Level(level or rule.level)
    idx = HIERARCHY.index(level)

    own = _clean(getattr(rule, LEVEL_FIELD[level], None))
    if own is None or own != ctx.get(level):
        return False

    for coarser in HIERARCHY[:idx]:
        value = _clean(getattr(rule, LEVEL_FIELD[coarser], None))
        wanted = ctx.get(coarser)
        if value is not None and wanted is not None and value != wanted:
            return False

    for finer in HIERARCHY[idx + 1:]:
        if _clean(getattr(rule, LEVEL_FIELD[finer], None)) is not None:
            return False

    return True
