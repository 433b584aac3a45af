from __future__ import annotations

from sqlalchemy import (
    Column,
    Integer,
    BigInteger,
    String,
    Text,
    Boolean,
    DateTime,
    Numeric,
    ForeignKey,
    UniqueConstraint,
    Index,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .db import Base

# Money columns come back as floats; the API never does arithmetic on Decimal.
Money = Numeric(10, 2, asdecimal=False)

# BIGINT on MySQL, plain INTEGER on SQLite so autoincrement keeps working.
Id = BigInteger().with_variant(Integer, "sqlite")

SCOPE_FIELDS = ("sport_type", "tournament_id", "team_id", "event_id", "ticket_id")
NAME_FIELDS = ("sport_name", "tournament_name", "team_name", "event_name", "ticket_name")


class HierarchyScopeMixin:
    """
    Scope columns shared by markup rules and hospitality assignments.

    Only the ids down to `level` are set; finer ids stay NULL.
    """

    sport_type = Column(String(100), nullable=True, index=True)
    tournament_id = Column(String(100), nullable=True, index=True)
    team_id = Column(String(100), nullable=True, index=True)
    event_id = Column(String(100), nullable=True, index=True)
    ticket_id = Column(String(100), nullable=True, index=True)

    # display names for the admin UI, never used in resolution
    sport_name = Column(String(255), nullable=True)
    tournament_name = Column(String(255), nullable=True)
    team_name = Column(String(255), nullable=True)
    event_name = Column(String(255), nullable=True)
    ticket_name = Column(String(255), nullable=True)

    level = Column(String(20), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, server_default=text("1"), default=True)

    created_by = Column(Integer, nullable=True)
    updated_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=False), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=False),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def scope(self) -> dict:
        return {f: getattr(self, f) for f in SCOPE_FIELDS}


class MarkupRule(HierarchyScopeMixin, Base):
    __tablename__ = "markup_rules"
    __table_args__ = (
        UniqueConstraint(*SCOPE_FIELDS, name="unique_markup_scope"),
    )

    id = Column(Id, primary_key=True, autoincrement=True)
    markup_type = Column(String(20), nullable=False, server_default=text("'fixed'"), default="fixed")
    markup_amount = Column(Money, nullable=False, server_default=text("0"), default=0)


class TicketMarkup(Base):
    """Flat per-ticket markup that predates markup_rules."""

    __tablename__ = "ticket_markups"
    __table_args__ = (
        UniqueConstraint("event_id", "ticket_id", name="unique_event_ticket"),
    )

    id = Column(Id, primary_key=True, autoincrement=True)
    event_id = Column(String(100), nullable=False, index=True)
    ticket_id = Column(String(100), nullable=False, index=True)
    markup_price_usd = Column(Money, nullable=False)
    markup_type = Column(String(20), nullable=False, server_default=text("'fixed'"), default="fixed")
    markup_percentage = Column(Numeric(5, 2, asdecimal=False), nullable=True)
    base_price_usd = Column(Money, nullable=False)
    final_price_usd = Column(Money, nullable=False)
    created_by = Column(Integer, nullable=True)
    updated_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=False), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=False),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class Hospitality(Base):
    __tablename__ = "hospitalities"

    id = Column(Id, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price_usd = Column(Money, nullable=True)  # legacy, new services have no price
    is_active = Column(Boolean, nullable=False, server_default=text("1"), default=True, index=True)
    sort_order = Column(Integer, nullable=False, server_default=text("0"), default=0, index=True)
    created_by = Column(Integer, nullable=True)
    updated_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=False), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=False),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    assignments = relationship(
        "HospitalityAssignment",
        back_populates="hospitality",
        cascade="all, delete-orphan",
    )
    ticket_links = relationship(
        "TicketHospitality",
        back_populates="hospitality",
        cascade="all, delete-orphan",
    )


class HospitalityAssignment(HierarchyScopeMixin, Base):
    __tablename__ = "hospitality_assignments"
    __table_args__ = (
        UniqueConstraint("hospitality_id", *SCOPE_FIELDS, name="unique_hospitality_scope"),
    )

    id = Column(Id, primary_key=True, autoincrement=True)
    hospitality_id = Column(
        Id,
        ForeignKey("hospitalities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    hospitality = relationship("Hospitality", back_populates="assignments")


class TicketHospitality(Base):
    """Legacy ticket -> hospitality mapping, read as ticket-level assignments."""

    __tablename__ = "ticket_hospitalities"
    __table_args__ = (
        UniqueConstraint("event_id", "ticket_id", "hospitality_id", name="unique_ticket_hospitality"),
        Index("idx_event_ticket", "event_id", "ticket_id"),
    )

    id = Column(Id, primary_key=True, autoincrement=True)
    event_id = Column(String(100), nullable=False)
    ticket_id = Column(String(100), nullable=False)
    hospitality_id = Column(
        Id,
        ForeignKey("hospitalities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    custom_price_usd = Column(Money, nullable=True)
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=False), server_default=func.now(), nullable=False)

    hospitality = relationship("Hospitality", back_populates="ticket_links")
