from __future__ import annotations

import pytest
from sqlalchemy import func
from sqlmodel import select

from apps.api.services.database import transaction
from apps.api.services.errors import ValidationError
from apps.api.services.solutions import SolutionMatcher, extract_keywords, normalize_text
from packages.db.models import EmailSolutionHistoryTable


def test_normalize_text_collapses_whitespace():
    assert normalize_text("  Ｗi-Fi   keeps\nDropping ") == "wi-fi keeps dropping"


def test_extract_keywords_drops_short_and_stop_words():
    assert extract_keywords("The VPN is down and I can't log in") == frozenset({"vpn", "down", "log"})


@pytest.mark.asyncio
async def test_only_same_category_solutions_are_candidates(matcher, catalog):
    await catalog.create_solution(category="Network", title="Restart router", description="Power cycle it")
    await catalog.create_solution(category="Email", title="Router password", description="Reset router")

    matches = await matcher.search(category="Network", description="router offline")

    assert [match.solution.category for match in matches] == ["Network"]


@pytest.mark.asyncio
async def test_matches_ranked_by_keyword_overlap(matcher, catalog):
    await catalog.create_solution(category="Email", title="Quota", description="Mailbox storage is full")
    await catalog.create_solution(
        category="Email", title="Outlook sync", description="Outlook mailbox stops syncing, rebuild the profile"
    )

    matches = await matcher.search(category="Email", description="Outlook mailbox not syncing")

    assert [match.solution.title for match in matches] == ["Outlook sync", "Quota"]
    assert matches[0].score > matches[1].score
    assert matches[1].score == 1


@pytest.mark.asyncio
async def test_results_bounded_by_limit(session_factory, catalog):
    for index in range(7):
        await catalog.create_solution(category="Access", title=f"Badge fix {index}", description="Badge reader")

    matches = await SolutionMatcher(session_factory, limit=5).search(category="Access", description="badge")

    assert len(matches) == 5


@pytest.mark.asyncio
async def test_empty_category_returns_no_matches(matcher):
    assert await matcher.search(category="Facilities", description="Broken chair") == []


@pytest.mark.asyncio
async def test_previous_exposure_breaks_ties(session_factory, matcher, catalog):
    older = await catalog.create_solution(category="Hardware", title="Dock", description="Docking station")
    await catalog.create_solution(category="Hardware", title="Monitor", description="Display cable")
    async with transaction(session_factory) as session:
        await matcher.record_exposure(
            session, ticket_id="t-1", submitter_email="Kim@Acme.io", solutions=[older]
        )

    matches = await matcher.search(
        category="Hardware", description="laptop fan noise", submitter_email="kim@acme.io"
    )

    assert matches[0].solution.id == older.id
    assert matches[0].previously_shown is True
    assert matches[1].previously_shown is False


@pytest.mark.asyncio
async def test_search_never_records_exposure(session_factory, matcher, catalog):
    await catalog.create_solution(category="Network", title="Restart router", description="Power cycle it")

    await matcher.search(category="Network", description="router", submitter_email="kim@acme.io")

    async with session_factory() as session:
        count = await session.scalar(select(func.count()).select_from(EmailSolutionHistoryTable))
    assert count == 0


@pytest.mark.asyncio
async def test_catalog_lists_by_category_and_validates(catalog):
    await catalog.create_solution(category="Network", title="Restart router", description="Power cycle it")
    await catalog.create_solution(category="Email", title="Quota", description="Archive mail")

    assert [item.title for item in await catalog.list_solutions(category="Email")] == ["Quota"]
    assert len(await catalog.list_solutions()) == 2
    with pytest.raises(ValidationError):
        await catalog.create_solution(category="Email", title=" ", description="Archive mail")
