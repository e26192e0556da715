from crm_assistant.models.company import Company
from crm_assistant.models.contact import Contact
from crm_assistant.models.deal import Deal, DealStage
from crm_assistant.models.event import EventLog
from crm_assistant.models.note import Note
from crm_assistant.models.user import User

__all__ = [
    "Company",
    "Contact",
    "Deal",
    "DealStage",
    "EventLog",
    "Note",
    "User",
]
