from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ..errors import NotFoundError, ValidationError
from ..models import NAME_FIELDS, SCOPE_FIELDS, Hospitality, HospitalityAssignment, TicketHospitality
from ..pricing.hierarchy import Level, LookupContext, normalize_scope, validate_scope
from .markup_rules import context_filter, level_order, paginate, scope_filter

logger = logging.getLogger("ticketproxy.admin")

SERVICE_FIELDS = ("name", "description", "price_usd", "is_active", "sort_order")
ASSIGNMENT_FILTERS = ("level", "sport_type", "tournament_id", "team_id", "event_id", "hospitality_id")


def service_to_dict(service: Hospitality) -> Dict[str, Any]:
    return {
        "id": service.id,
        "name": service.name,
        "description": service.description,
        "price_usd": service.price_usd,
        "is_active": bool(service.is_active),
        "sort_order": service.sort_order,
        "created_by": service.created_by,
        "updated_by": service.updated_by,
        "created_at": service.created_at.isoformat() if service.created_at else None,
        "updated_at": service.updated_at.isoformat() if service.updated_at else None,
    }


def assignment_to_dict(assignment: HospitalityAssignment) -> Dict[str, Any]:
    service = assignment.hospitality
    data = {
        "id": assignment.id,
        "hospitality_id": assignment.hospitality_id,
        "hospitality_name": service.name if service else None,
        "hospitality_description": service.description if service else None,
        "hospitality_is_active": bool(service.is_active) if service else None,
        "level": assignment.level,
        "is_active": bool(assignment.is_active),
        "created_by": assignment.created_by,
        "updated_by": assignment.updated_by,
        "created_at": assignment.created_at.isoformat() if assignment.created_at else None,
        "updated_at": assignment.updated_at.isoformat() if assignment.updated_at else None,
    }
    for name in SCOPE_FIELDS + NAME_FIELDS:
        data[name] = getattr(assignment, name)
    return data


def ticket_link_to_dict(link: TicketHospitality) -> Dict[str, Any]:
    service = link.hospitality
    return {
        "id": link.id,
        "event_id": link.event_id,
        "ticket_id": link.ticket_id,
        "hospitality_id": link.hospitality_id,
        "name": service.name if service else None,
        "description": service.description if service else None,
        "price_usd": service.price_usd if service else None,
        "custom_price_usd": link.custom_price_usd,
    }


class HospitalityRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    # -------------------------
    # Services
    # -------------------------
    def list_services(self, active_only: bool = False) -> List[Hospitality]:
        query = self.db.query(Hospitality)
        if active_only:
            query = query.filter(Hospitality.is_active.is_(True))
        return query.order_by(Hospitality.sort_order, Hospitality.name).all()

    def get_service(self, service_id: int) -> Hospitality:
        service = self.db.get(Hospitality, service_id)
        if service is None:
            raise NotFoundError("Hospitality not found")
        return service

    def create_service(self, data: Mapping[str, Any], admin_id: Optional[int] = None) -> Hospitality:
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required")
        service = Hospitality(
            name=name,
            description=data.get("description"),
            price_usd=data.get("price_usd"),
            is_active=bool(data.get("is_active", True)),
            sort_order=int(data.get("sort_order") or 0),
            created_by=admin_id,
            updated_by=admin_id,
        )
        self.db.add(service)
        self.db.commit()
        self.db.refresh(service)
        logger.info("Hospitality created (id=%s, admin_user_id=%s)", service.id, admin_id)
        return service

    def update_service(self, service_id: int, data: Mapping[str, Any], admin_id: Optional[int] = None) -> Hospitality:
        service = self.get_service(service_id)
        for name in SERVICE_FIELDS:
            if name in data and data[name] is not None:
                setattr(service, name, data[name])
        if not str(service.name or "").strip():
            raise ValidationError("name is required")
        service.updated_by = admin_id
        self.db.commit()
        self.db.refresh(service)
        logger.info("Hospitality updated (id=%s, admin_user_id=%s)", service_id, admin_id)
        return service

    def delete_service(self, service_id: int) -> None:
        service = self.get_service(service_id)
        self.db.delete(service)
        self.db.commit()
        logger.info("Hospitality deleted (id=%s)", service_id)

    # -------------------------
    # Hierarchical assignments
    # -------------------------
    def _assignments(self):
        return self.db.query(HospitalityAssignment).options(joinedload(HospitalityAssignment.hospitality))

    def _upsert(self, scope: Dict[str, Optional[str]], level: Level, hospitality_id: int,
                data: Mapping[str, Any], admin_id: Optional[int]) -> HospitalityAssignment:
        self.get_service(hospitality_id)
        assignment = (
            scope_filter(self.db.query(HospitalityAssignment), HospitalityAssignment, scope)
            .filter(HospitalityAssignment.hospitality_id == hospitality_id)
            .one_or_none()
        )
        if assignment is None:
            assignment = HospitalityAssignment(
                hospitality_id=hospitality_id,
                level=level.value,
                created_by=admin_id,
                **scope,
            )
            self.db.add(assignment)
        assignment.is_active = bool(data.get("is_active", True))
        assignment.updated_by = admin_id
        for name in NAME_FIELDS:
            if name in data:
                setattr(assignment, name, data[name])
        return assignment

    def upsert_assignment(self, data: Mapping[str, Any], admin_id: Optional[int] = None) -> HospitalityAssignment:
        if not data.get("hospitality_id"):
            raise ValidationError("hospitality_id is required")
        scope = normalize_scope(data)
        level = validate_scope(scope)
        try:
            assignment = self._upsert(scope, level, int(data["hospitality_id"]), data, admin_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(assignment)
        logger.info(
            "Hospitality %s assigned at %s level (assignment_id=%s, admin_user_id=%s)",
            assignment.hospitality_id, level.value, assignment.id, admin_id,
        )
        return assignment

    def batch_upsert_assignments(
        self,
        scope_data: Mapping[str, Any],
        hospitality_ids: Sequence[int],
        admin_id: Optional[int] = None,
    ) -> List[HospitalityAssignment]:
        scope = normalize_scope(scope_data)
        level = validate_scope(scope)
        try:
            results = [self._upsert(scope, level, int(hid), scope_data, admin_id) for hid in hospitality_ids]
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        for assignment in results:
            self.db.refresh(assignment)
        logger.info("Assigned %d hospitalities at %s level (admin_user_id=%s)", len(results), level.value, admin_id)
        return results

    def replace_assignments_at_scope(
        self,
        scope_data: Mapping[str, Any],
        hospitality_ids: Sequence[int],
        admin_id: Optional[int] = None,
    ) -> Tuple[int, int]:
        """Make the scope hold exactly `hospitality_ids`. Returns (deleted, inserted)."""
        scope = normalize_scope(scope_data)
        level = validate_scope(scope)
        try:
            deleted = scope_filter(
                self.db.query(HospitalityAssignment), HospitalityAssignment, scope
            ).delete(synchronize_session="fetch")
            self.db.flush()
            self.db.expire_all()
            for hid in hospitality_ids:
                self._upsert(scope, level, int(hid), scope_data, admin_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(
            "Replaced assignments at %s level: removed %d, added %d (admin_user_id=%s)",
            level.value, deleted, len(hospitality_ids), admin_id,
        )
        return deleted, len(hospitality_ids)

    def remove_assignments_at_scope(
        self,
        scope_data: Mapping[str, Any],
        hospitality_ids: Optional[Sequence[int]] = None,
    ) -> int:
        scope = normalize_scope(scope_data)
        validate_scope(scope)
        query = scope_filter(self.db.query(HospitalityAssignment), HospitalityAssignment, scope)
        if hospitality_ids:
            query = query.filter(HospitalityAssignment.hospitality_id.in_([int(h) for h in hospitality_ids]))
        deleted = query.delete(synchronize_session="fetch")
        self.db.commit()
        return deleted

    def assignments_at_scope(self, scope_data: Mapping[str, Any]) -> List[HospitalityAssignment]:
        scope = normalize_scope(scope_data)
        validate_scope(scope)
        return (
            scope_filter(self._assignments(), HospitalityAssignment, scope)
            .join(HospitalityAssignment.hospitality)
            .filter(HospitalityAssignment.is_active.is_(True))
            .order_by(Hospitality.sort_order, Hospitality.name)
            .all()
        )

    def list_assignments(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        page: int = 1,
        per_page: int = 50,
    ) -> Tuple[List[HospitalityAssignment], Dict[str, Any]]:
        filters = filters or {}
        query = self._assignments().join(HospitalityAssignment.hospitality)
        for name in ASSIGNMENT_FILTERS:
            if filters.get(name):
                query = query.filter(getattr(HospitalityAssignment, name) == filters[name])
        if filters.get("is_active") is not None:
            query = query.filter(HospitalityAssignment.is_active == bool(filters["is_active"]))
        query = query.order_by(
            level_order(HospitalityAssignment.level),
            HospitalityAssignment.sport_name,
            HospitalityAssignment.tournament_name,
            HospitalityAssignment.team_name,
            HospitalityAssignment.event_name,
            HospitalityAssignment.ticket_name,
            Hospitality.sort_order,
            Hospitality.name,
        )
        return paginate(query, page, per_page)

    def get_assignment(self, assignment_id: int) -> HospitalityAssignment:
        assignment = self.db.get(HospitalityAssignment, assignment_id)
        if assignment is None:
            raise NotFoundError("Assignment not found")
        return assignment

    def delete_assignment(self, assignment_id: int) -> None:
        assignment = self.get_assignment(assignment_id)
        self.db.delete(assignment)
        self.db.commit()
        logger.info("Hospitality assignment deleted (id=%s)", assignment_id)

    # -------------------------
    # Resolver store
    # -------------------------
    def find_assignments(self, level: Level, ctx: LookupContext) -> List[HospitalityAssignment]:
        if ctx.get(level) is None:
            return []
        query = (
            self._assignments()
            .join(HospitalityAssignment.hospitality)
            .filter(
                HospitalityAssignment.level == level.value,
                HospitalityAssignment.is_active.is_(True),
                Hospitality.is_active.is_(True),
            )
        )
        query = context_filter(query, HospitalityAssignment, level, ctx)
        return query.order_by(Hospitality.sort_order, Hospitality.name).all()

    def get_ticket_hospitalities(self, event_id: Optional[str], ticket_id: str) -> List[TicketHospitality]:
        query = (
            self.db.query(TicketHospitality)
            .options(joinedload(TicketHospitality.hospitality))
            .join(TicketHospitality.hospitality)
            .filter(TicketHospitality.ticket_id == ticket_id, Hospitality.is_active.is_(True))
        )
        if event_id is not None:
            query = query.filter(TicketHospitality.event_id == event_id)
        return query.order_by(Hospitality.sort_order, Hospitality.name).all()

    def get_event_hospitalities(self, event_id: str) -> List[TicketHospitality]:
        return (
            self.db.query(TicketHospitality)
            .options(joinedload(TicketHospitality.hospitality))
            .join(TicketHospitality.hospitality)
            .filter(TicketHospitality.event_id == event_id, Hospitality.is_active.is_(True))
            .order_by(TicketHospitality.ticket_id, Hospitality.sort_order, Hospitality.name)
            .all()
        )

    def assign_ticket_hospitalities(
        self,
        event_id: str,
        ticket_id: str,
        hospitality_ids: Iterable[int],
        admin_id: Optional[int] = None,
    ) -> Tuple[int, int]:
        """Replace the legacy links of one ticket. Returns (deleted, inserted)."""
        try:
            deleted = (
                self.db.query(TicketHospitality)
                .filter(TicketHospitality.event_id == event_id, TicketHospitality.ticket_id == ticket_id)
                .delete(synchronize_session="fetch")
            )
            inserted = 0
            for hid in dict.fromkeys(int(h) for h in hospitality_ids):
                self.get_service(hid)
                self.db.add(TicketHospitality(
                    event_id=event_id,
                    ticket_id=ticket_id,
                    hospitality_id=hid,
                    created_by=admin_id,
                ))
                inserted += 1
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return deleted, inserted

    def stats(self) -> Dict[str, Any]:
        total = self.db.query(func.count(Hospitality.id)).scalar() or 0
        active = self.db.query(func.count(Hospitality.id)).filter(Hospitality.is_active.is_(True)).scalar() or 0
        assignments = (
            self.db.query(func.count(HospitalityAssignment.id))
            .filter(HospitalityAssignment.is_active.is_(True))
            .scalar()
        ) or 0
        legacy = self.db.query(func.count(TicketHospitality.id)).scalar() or 0

        by_level = (
            self.db.query(HospitalityAssignment.level, func.count(HospitalityAssignment.id))
            .filter(HospitalityAssignment.is_active.is_(True))
            .group_by(HospitalityAssignment.level)
            .order_by(level_order(HospitalityAssignment.level))
            .all()
        )
        assignment_count = func.count(HospitalityAssignment.id)
        top = (
            self.db.query(Hospitality.id, Hospitality.name, assignment_count)
            .outerjoin(
                HospitalityAssignment,
                (HospitalityAssignment.hospitality_id == Hospitality.id)
                & HospitalityAssignment.is_active.is_(True),
            )
            .group_by(Hospitality.id, Hospitality.name)
            .order_by(assignment_count.desc(), Hospitality.id)
            .limit(5)
            .all()
        )
        return {
            "total_hospitalities": total,
            "active_hospitalities": active,
            "total_assignments": assignments,
            "legacy_assignments": legacy,
            "assignments_by_level": [{"level": level, "count": count} for level, count in by_level],
            "top_hospitalities": [
                {"id": hid, "name": name, "assignment_count": count} for hid, name, count in top
            ],
        }
