"""Service layer exports."""

from .assignment import AssignmentResolver
from .comments import TicketComment, TicketCommentStore
from .errors import (
    AuthorizationError,
    ConflictError,
    HelpdeskError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .history import AuditTrailRecorder, HistoryAction, TicketHistoryEntry
from .notifications import NotificationDispatcher, NotificationKind, TicketNotification
from .postgres import PostgresConnectionTester
from .solutions import Solution, SolutionCatalog, SolutionMatch, SolutionMatcher
from .tickets import (
    Actor,
    Ticket,
    TicketAccessPolicy,
    TicketLifecycleManager,
    TicketPatch,
    TicketStats,
    TicketStatus,
    TicketStore,
    TicketSubmission,
    TicketUpdateBuilder,
    TicketUrgency,
)
from .users import DirectoryUser, UserDirectory, UserRole

__all__ = [
    "Actor",
    "AssignmentResolver",
    "AuditTrailRecorder",
    "AuthorizationError",
    "ConflictError",
    "DirectoryUser",
    "HelpdeskError",
    "HistoryAction",
    "NotFoundError",
    "NotificationDispatcher",
    "NotificationKind",
    "PersistenceError",
    "PostgresConnectionTester",
    "Solution",
    "SolutionCatalog",
    "SolutionMatch",
    "SolutionMatcher",
    "Ticket",
    "TicketAccessPolicy",
    "TicketComment",
    "TicketCommentStore",
    "TicketHistoryEntry",
    "TicketLifecycleManager",
    "TicketNotification",
    "TicketPatch",
    "TicketStats",
    "TicketStatus",
    "TicketStore",
    "TicketSubmission",
    "TicketUpdateBuilder",
    "TicketUrgency",
    "UserDirectory",
    "UserRole",
    "ValidationError",
]
