"""Database models and utilities."""

from .models import (
    EmailSolutionHistoryTable,
    SolutionTable,
    TicketCommentTable,
    TicketCounterTable,
    TicketHistoryTable,
    TicketTable,
    UserTable,
)

__all__ = [
    "EmailSolutionHistoryTable",
    "SolutionTable",
    "TicketCommentTable",
    "TicketCounterTable",
    "TicketHistoryTable",
    "TicketTable",
    "UserTable",
]
