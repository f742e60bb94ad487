from __future__ import annotations

import pytest

from apps.api.services.assignment import AssignmentResolver
from apps.api.services.errors import ConflictError, NotFoundError, ValidationError
from apps.api.services.users import UserRole, normalize_email


def test_normalize_email_lowercases():
    assert normalize_email("  Quinn@Acme.IO ") == "quinn@acme.io"


def test_normalize_email_rejects_garbage():
    with pytest.raises(ValidationError):
        normalize_email("quinn at acme")


@pytest.mark.asyncio
async def test_create_and_list_users(directory):
    admin = await directory.create_user(name="Zoe", email="zoe@acme.io", role=UserRole.ADMIN)
    await directory.create_user(name="Ari", email="ARI@acme.io")

    users = await directory.list_users()

    assert [user.name for user in users] == ["Ari", "Zoe"]
    assert users[0].email == "ari@acme.io"
    assert users[0].role is UserRole.STAFF
    assert (await directory.get_user(admin.id)).role is UserRole.ADMIN


@pytest.mark.asyncio
async def test_duplicate_email_conflicts(directory):
    await directory.create_user(name="Ari", email="ari@acme.io")

    with pytest.raises(ConflictError):
        await directory.create_user(name="Ari Two", email="Ari@acme.io")


@pytest.mark.asyncio
async def test_blank_name_rejected(directory):
    with pytest.raises(ValidationError):
        await directory.create_user(name="  ", email="ari@acme.io")


@pytest.mark.asyncio
async def test_assignment_resolver_checks_existence(session_factory, directory, staff_member):
    resolver = AssignmentResolver(directory)

    async with session_factory() as session:
        await resolver.validate(session, staff_member.id)
        with pytest.raises(NotFoundError):
            await resolver.validate(session, "unknown-user")
        with pytest.raises(NotFoundError):
            await resolver.validate(session, "")
