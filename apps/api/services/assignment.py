from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from .errors import NotFoundError
from .users import UserLookup

logger = logging.getLogger(__name__)


class AssignmentResolver:
    """Confirm that an assignee reference points at an existing user.

    Only existence is checked. Role eligibility is a caller policy.
    """

    def __init__(self, directory: UserLookup) -> None:
        self._directory = directory

    async def validate(self, session: AsyncSession, user_id: str) -> None:
        if not user_id or not await self._directory.exists(session, user_id):
            logger.info("Rejected assignment to unknown user %s", user_id)
            raise NotFoundError(f"User {user_id} not found")
