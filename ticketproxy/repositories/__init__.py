from .hospitality import HospitalityRepository
from .markup_rules import MarkupRuleRepository, TicketMarkupRepository

__all__ = ["HospitalityRepository", "MarkupRuleRepository", "TicketMarkupRepository"]
