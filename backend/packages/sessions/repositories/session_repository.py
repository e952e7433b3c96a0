from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from common.repositories.base import BaseRepository
from packages.sessions.models.database.session import SessionEntity
from packages.sessions.models.domain.session import Session


class SessionRepository(BaseRepository[SessionEntity, Session]):
    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(SessionEntity, Session, db_session)
