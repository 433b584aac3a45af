"""
Ticket proxy: forwards /v1 traffic to the ticketing API and serves markup
and hospitality pricing resolved from the sport > tournament > team >
event > ticket hierarchy.

Initialize the database tables with:
    python -m ticketproxy
"""

from .db import Base, engine
from . import models  # noqa: F401  registers the tables on Base.metadata


def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)
