from __future__ import annotations

from types import MappingProxyType

TICKETS_STORAGE_KEY = "incident_tickets"
NOTIFICATIONS_STORAGE_KEY = "email_notifications"

PRIORITY_LEVELS = ("P1", "P2", "P3", "P4")

TICKET_STATUS_OPEN = "Open"
TICKET_STATUS_IN_PROGRESS = "In Progress"
TICKET_STATUS_RESOLVED = "Resolved"
TICKET_STATUS_CLOSED = "Closed"

TICKET_STATUSES = (
    TICKET_STATUS_OPEN,
    TICKET_STATUS_IN_PROGRESS,
    TICKET_STATUS_RESOLVED,
    TICKET_STATUS_CLOSED,
)
INACTIVE_STATUSES = frozenset({TICKET_STATUS_RESOLVED, TICKET_STATUS_CLOSED})

# Hours from creation until the SLA deadline, per priority.
SLA_HOURS = MappingProxyType({"P1": 4, "P2": 24, "P3": 72, "P4": 168})

# Upper bound for the recent-notifications window: ten years.
MAX_RECENT_WINDOW_HOURS = 24 * 365 * 10

DEFAULT_SUPPORT_ADDRESS = "support@company.com"
DEFAULT_MANAGER_ADDRESS = "manager@company.com"
DEFAULT_COMMENT_AUTHOR = "current.user@company.com"

TICKET_ID_PREFIX = "INC"
NOTIFICATION_ID_PREFIX = "EMAIL"

DEMO_TICKETS = [
    {
        "title": "Database Connection Timeout",
        "description": (
            "Production database is experiencing connection timeouts affecting user authentication."
        ),
        "priority": "P1",
        "status": TICKET_STATUS_OPEN,
        "reported_by": "john.doe@company.com",
        "assigned_to": "sarah.tech@company.com",
        "category": "Infrastructure",
        "tags": ["database", "production", "authentication"],
    },
    {
        "title": "Email Notifications Not Working",
        "description": (
            "Users are not receiving email notifications for password resets and account verification."
        ),
        "priority": "P2",
        "status": TICKET_STATUS_IN_PROGRESS,
        "reported_by": "alice.smith@company.com",
        "assigned_to": "mike.dev@company.com",
        "category": "Application",
        "tags": ["email", "notifications", "user-experience"],
    },
    {
        "title": "Mobile App Crashes on iOS 17",
        "description": "Mobile application crashes when opening the profile section on iOS 17 devices.",
        "priority": "P2",
        "status": TICKET_STATUS_OPEN,
        "reported_by": "bob.johnson@company.com",
        "category": "Mobile",
        "tags": ["mobile", "ios", "crash", "profile"],
    },
    {
        "title": "Feature Request: Dark Mode",
        "description": "Multiple users have requested a dark mode option for the web application.",
        "priority": "P4",
        "status": TICKET_STATUS_OPEN,
        "reported_by": "carol.user@company.com",
        "category": "Enhancement",
        "tags": ["feature-request", "ui", "dark-mode"],
    },
]
