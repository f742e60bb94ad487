from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from packages.db.models import EmailSolutionHistoryTable, SolutionTable

from .database import ensure_datetime, transaction
from .errors import ValidationError

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_TOKEN_RE = re.compile(r"\w+")
_MIN_KEYWORD_LENGTH = 3
_STOP_WORDS = frozenset(
    {
        "and", "are", "but", "can", "cannot", "does", "for", "from", "has", "have",
        "how", "into", "its", "keeps", "not", "now", "our", "out", "that", "the",
        "then", "this", "too", "was", "were", "what", "when", "why", "will", "with",
        "won", "you", "your",
    }
)


def normalize_text(text: str) -> str:
    """Collapse whitespace, lowercase and unicode-normalize free text."""

    normalized = unicodedata.normalize("NFKC", text or "")
    normalized = normalized.lower().strip()
    return _WHITESPACE_RE.sub(" ", normalized)


def extract_keywords(text: str) -> frozenset[str]:
    """Return the keyword set used for overlap scoring."""

    tokens = _TOKEN_RE.findall(normalize_text(text))
    return frozenset(
        token for token in tokens if len(token) >= _MIN_KEYWORD_LENGTH and token not in _STOP_WORDS
    )


@dataclass(slots=True)
class Solution:
    """Reference answer associated with a ticket category."""

    id: str
    category: str
    title: str
    description: str
    created_at: datetime


@dataclass(slots=True)
class SolutionMatch:
    """A ranked candidate returned by the matcher."""

    solution: Solution
    score: int
    previously_shown: bool


class SolutionMatcher:
    """Rank category solutions against a ticket description.

    Containment is keyword-set overlap: the score is the number of description
    keywords that also appear in the solution's title or description. Solutions
    already shown to the same submitter email get a soft boost that only breaks
    ties between equal scores.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], *, limit: int = 5) -> None:
        if limit < 1:
            raise ValueError("limit must be positive")
        self._session_factory = session_factory
        self._limit = limit

    async def search(
        self, *, category: str, description: str, submitter_email: str | None = None
    ) -> list[SolutionMatch]:
        """Rank solutions for a ticket that has not been submitted yet."""

        async with self._session_factory() as session:
            return await self.rank(
                session, category=category, description=description, submitter_email=submitter_email
            )

    async def rank(
        self,
        session: AsyncSession,
        *,
        category: str,
        description: str,
        submitter_email: str | None = None,
    ) -> list[SolutionMatch]:
        result = await session.execute(select(SolutionTable).where(SolutionTable.category == category))
        candidates = [_table_to_solution(row) for row in result.scalars().all()]
        if not candidates:
            return []

        exposed: set[str] = set()
        if submitter_email:
            history = await session.execute(
                select(EmailSolutionHistoryTable.solution_id)
                .where(EmailSolutionHistoryTable.email == submitter_email.lower())
                .distinct()
            )
            exposed = {str(value) for value in history.scalars().all()}

        keywords = extract_keywords(description)
        matches = [
            SolutionMatch(
                solution=candidate,
                score=len(keywords & extract_keywords(f"{candidate.title} {candidate.description}")),
                previously_shown=candidate.id in exposed,
            )
            for candidate in candidates
        ]
        matches.sort(key=lambda match: match.solution.id)
        matches.sort(key=lambda match: match.solution.created_at, reverse=True)
        matches.sort(key=lambda match: (match.score, match.previously_shown), reverse=True)
        return matches[: self._limit]

    async def match_for_ticket(
        self,
        session: AsyncSession,
        *,
        ticket_id: str,
        category: str,
        description: str,
        submitter_email: str,
    ) -> list[SolutionMatch]:
        """Rank solutions for a new ticket and record that they were shown."""

        matches = await self.rank(
            session, category=category, description=description, submitter_email=submitter_email
        )
        await self.record_exposure(
            session,
            ticket_id=ticket_id,
            submitter_email=submitter_email,
            solutions=[match.solution for match in matches],
        )
        return matches

    async def record_exposure(
        self,
        session: AsyncSession,
        *,
        ticket_id: str,
        submitter_email: str,
        solutions: Iterable[Solution],
    ) -> None:
        now = datetime.now(timezone.utc)
        rows = [
            EmailSolutionHistoryTable(
                email=submitter_email.lower(),
                ticket_id=ticket_id,
                solution_id=solution.id,
                created_at=now,
            )
            for solution in solutions
        ]
        if not rows:
            return
        session.add_all(rows)
        await session.flush()
        logger.debug("Recorded %d solution exposures for ticket %s", len(rows), ticket_id)

    async def shown_for_ticket(self, ticket_id: str) -> list[Solution]:
        """Solutions recorded as shown when `ticket_id` was submitted."""

        query = (
            select(SolutionTable)
            .join(EmailSolutionHistoryTable, EmailSolutionHistoryTable.solution_id == SolutionTable.id)
            .where(EmailSolutionHistoryTable.ticket_id == ticket_id)
            .order_by(EmailSolutionHistoryTable.id)
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_table_to_solution(row) for row in result.scalars().all()]


class SolutionCatalog:
    """Admin-facing access to the `solutions` reference table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_solutions(self, *, category: str | None = None) -> Sequence[Solution]:
        query = select(SolutionTable)
        if category:
            query = query.where(SolutionTable.category == category)
        query = query.order_by(SolutionTable.created_at.desc())
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_table_to_solution(row) for row in result.scalars().all()]

    async def create_solution(self, *, category: str, title: str, description: str) -> Solution:
        category = (category or "").strip()
        title = (title or "").strip()
        description = (description or "").strip()
        if not category or not title or not description:
            raise ValidationError("Solution category, title and description are required")

        row = SolutionTable(
            category=category,
            title=title,
            description=description,
            created_at=datetime.now(timezone.utc),
        )
        async with transaction(self._session_factory) as session:
            session.add(row)
        logger.info("Created solution %s in category %s", row.id, category)
        return _table_to_solution(row)


def _table_to_solution(row: SolutionTable) -> Solution:
    return Solution(
        id=row.id,
        category=row.category,
        title=row.title,
        description=row.description,
        created_at=ensure_datetime(row.created_at),
    )
