"""
Central constants for the CRM front-end.

Enumerated value sets mirror the backend's enums; labels are display-only.
"""
from __future__ import annotations

from enum import Enum


class CustomerStatus(str, Enum):
    LEAD = "LEAD"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class OfferStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class TaskPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


CUSTOMER_STATUSES = tuple(s.value for s in CustomerStatus)
OFFER_STATUSES = tuple(s.value for s in OfferStatus)
TASK_STATUSES = tuple(s.value for s in TaskStatus)
TASK_PRIORITIES = tuple(p.value for p in TaskPriority)

CUSTOMER_STATUS_LABELS = {
    "LEAD": "Lead",
    "ACTIVE": "Active",
    "INACTIVE": "Inactive",
}

OFFER_STATUS_LABELS = {
    "DRAFT": "Draft",
    "SENT": "Sent",
    "ACCEPTED": "Accepted",
    "REJECTED": "Rejected",
    "CANCELLED": "Cancelled",
}

TASK_STATUS_LABELS = {
    "TODO": "To do",
    "IN_PROGRESS": "In progress",
    "DONE": "Done",
}

TASK_PRIORITY_LABELS = {
    "LOW": "Low",
    "MEDIUM": "Medium",
    "HIGH": "High",
}

# Keys held in the signed session cookie; cleared together.
SESSION_AUTH_KEY = "auth"
SESSION_USERNAME_KEY = "username"
SESSION_ROLES_KEY = "roles"

UNKNOWN_CUSTOMER = "Unknown customer"
MISSING_VALUE = "-"
