from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from apps.api.services.errors import AuthorizationError, ValidationError
from apps.api.services.tickets import (
    UNSET,
    Actor,
    Ticket,
    TicketAccessPolicy,
    TicketPatch,
    TicketStatus,
    TicketUpdateBuilder,
    TicketUrgency,
    derive_urgency,
)
from apps.api.services.users import UserRole

NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("delta", "expected"),
    [
        (timedelta(hours=-5), TicketUrgency.CRITICAL),
        (timedelta(hours=24), TicketUrgency.CRITICAL),
        (timedelta(days=2), TicketUrgency.HIGH),
        (timedelta(days=3), TicketUrgency.HIGH),
        (timedelta(days=6), TicketUrgency.NORMAL),
        (timedelta(days=7, minutes=1), TicketUrgency.LOW),
    ],
)
def test_derive_urgency_thresholds(delta, expected):
    assert derive_urgency(NOW + delta, now=NOW) is expected


def test_patch_tracks_only_present_fields():
    patch = TicketPatch.from_mapping({"status": "in_progress", "assignee_id": None})

    assert patch.status is TicketStatus.IN_PROGRESS
    assert patch.assignee_id is None
    assert patch.urgency is UNSET
    assert patch.present() == {"status": TicketStatus.IN_PROGRESS, "assignee_id": None}


def test_patch_rejects_unknown_fields():
    with pytest.raises(ValidationError, match="priority"):
        TicketPatch.from_mapping({"priority": "p1"})


@pytest.mark.parametrize("payload", [{"status": "closed"}, {"urgency": None}, {"due_date": "next week"}])
def test_patch_rejects_invalid_values(payload):
    with pytest.raises(ValidationError):
        TicketPatch.from_mapping(payload)


def test_patch_normalises_values():
    patch = TicketPatch(assignee_id="  ", solution="  ", due_date="2031-05-01T10:00:00")

    assert patch.assignee_id is None
    assert patch.solution is None
    assert patch.due_date == datetime(2031, 5, 1, 10, 0, tzinfo=timezone.utc)


def test_patch_converts_due_date_to_utc():
    local = datetime(2031, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))

    assert TicketPatch(due_date=local).due_date == datetime(2031, 5, 1, 10, 0, tzinfo=timezone.utc)


def test_builder_composes_notes_and_values():
    builder = TicketUpdateBuilder("ticket-1")
    assert builder.has_changes is False

    builder.stage("status", TicketStatus.RESOLVED, "Status changed to resolved.")
    builder.stage("resolved_at", NOW)
    builder.stage("solution", "Reset password", "Solution updated.")

    assert builder.staged == {"status": "resolved", "resolved_at": NOW, "solution": "Reset password"}
    assert builder.notes == "Status changed to resolved. Solution updated."
    compiled = builder.statement(updated_at=NOW).compile()
    assert "UPDATE tickets SET" in str(compiled)
    assert compiled.params["status"] == "resolved"


def test_builder_refuses_unknown_columns():
    with pytest.raises(KeyError):
        TicketUpdateBuilder("ticket-1").stage("ticket_number", 99)


def test_builder_without_changes_has_no_statement():
    with pytest.raises(ValueError):
        TicketUpdateBuilder("ticket-1").statement(updated_at=NOW)


def _ticket(assignee_id: str | None) -> Ticket:
    return Ticket(
        id="ticket-1",
        ticket_number=1,
        category="Network",
        description="VPN down",
        submitter_email="lee@acme.io",
        status=TicketStatus.OPEN,
        urgency=TicketUrgency.NORMAL,
        assignee_id=assignee_id,
        solution=None,
        due_date=None,
        resolved_at=None,
        resolved_by=None,
        created_at=NOW,
        updated_at=NOW,
    )


def test_access_policy():
    policy = TicketAccessPolicy()
    staff = Actor(user_id="u-1")
    admin = Actor(user_id="u-9", role=UserRole.ADMIN)

    policy.ensure_can_update(None, _ticket("u-2"))
    policy.ensure_can_update(admin, _ticket("u-2"))
    policy.ensure_can_update(staff, _ticket(None))
    policy.ensure_can_update(staff, _ticket("u-1"))
    with pytest.raises(AuthorizationError):
        policy.ensure_can_update(staff, _ticket("u-2"))
