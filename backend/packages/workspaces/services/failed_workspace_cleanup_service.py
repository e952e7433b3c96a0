"""
Replacement of workspaces stuck in FAILED.

A cleanup deletes the failed workspace and provisions a new one for the
same session. Requests for the same (session, workspace) pair are collapsed
while one is in flight. A recurring sweep schedules cleanup for every
workspace that has been FAILED for longer than the grace period.
"""

import asyncio
import re
from datetime import datetime, timedelta
from typing import Callable, Optional, Set

from common.core.clock import utc_now
from common.core.config import settings
from common.core.exceptions import ProvisioningError, ValidationError
from common.core.telemetry import get_logger, trace_span
from common.providers.tracking.interface import KeySetInterface
from common.providers.tracking.memory_tracking import MemoryKeySet
from packages.sessions.repositories.session_repository import SessionRepository
from packages.workspaces.models.domain.workspace import WorkspaceStatus
from packages.workspaces.services.workspace_service import WorkspaceService

logger = get_logger(__name__)

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9\-_]")


def normalize_workspace_name(name: str, max_length: Optional[int] = None) -> str:
    """Map a session name onto the provisioner's allowed characters and length."""
    max_length = max_length or settings.workspace_name_max_length
    return _INVALID_NAME_CHARS.sub("-", name).lower()[:max_length]


def cleanup_key(session_id: int, workspace_id: int) -> str:
    return f"{session_id}:{workspace_id}"


class FailedWorkspaceCleanupService:
    def __init__(
        self,
        workspace_service: Optional[WorkspaceService] = None,
        session_repo: Optional[SessionRepository] = None,
        pending_keys: Optional[KeySetInterface] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.workspace_service = workspace_service or WorkspaceService()
        self.session_repo = session_repo or SessionRepository()
        self.pending_keys = pending_keys or MemoryKeySet()
        self.clock = clock
        self.grace_period = timedelta(minutes=settings.failed_workspace_grace_period_minutes)
        self._tasks: Set[asyncio.Task] = set()

    def request_cleanup(
        self, session_id: int, workspace_id: int
    ) -> Optional[asyncio.Task]:
        """
        Schedule a cleanup on the running loop.

        Returns:
            The scheduled task, or None if a cleanup for the pair is already pending
        """
        key = cleanup_key(session_id, workspace_id)
        if not self.pending_keys.add_if_absent(key):
            logger.info(f"Cleanup already pending for workspace {workspace_id}")
            return None

        task = asyncio.create_task(
            self._run_cleanup(session_id, workspace_id, key),
            name=f"workspace-cleanup:{key}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_cleanup_done)
        return task

    def _on_cleanup_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Workspace cleanup {task.get_name()} failed: {error}")

    async def _run_cleanup(self, session_id: int, workspace_id: int, key: str) -> bool:
        try:
            return await self.cleanup_failed_workspace(session_id, workspace_id)
        finally:
            self.pending_keys.discard(key)

    @trace_span
    async def cleanup_failed_workspace(self, session_id: int, workspace_id: int) -> bool:
        """
        Replace a FAILED workspace of a session with a fresh one.

        Returns:
            True when the workspace was replaced or no longer needs replacing,
            False when the session/workspace is gone or a step failed
        """
        session = await self.session_repo.get(session_id)
        if not session:
            logger.warning(f"Session {session_id} not found, skipping workspace cleanup")
            return False

        workspace = await self.workspace_service.get_workspace(workspace_id)
        if not workspace:
            return False

        if workspace.status != WorkspaceStatus.FAILED:
            logger.info(
                f"Workspace {workspace_id} is {workspace.status}, no cleanup needed"
            )
            return True

        logger.info(f"Cleaning up failed workspace {workspace_id} of session {session_id}")
        if not await self.workspace_service.delete_workspace(workspace_id):
            logger.error(f"Failed to delete workspace {workspace_id}")
            return False

        name = normalize_workspace_name(session.name or f"session-{session_id}")
        try:
            replacement = await self.workspace_service.create_workspace(
                session_id,
                name,
                template_id=session.template_id,
                automatic_updates=True,
                ttl_ms=settings.workspace_ttl_ms,
            )
        except (ProvisioningError, ValidationError) as e:
            logger.error(f"Failed to create replacement workspace for session {session_id}: {e}")
            return False

        logger.info(
            f"Replaced failed workspace {workspace_id} with {replacement.id} for session {session_id}"
        )
        return True

    @trace_span
    async def cleanup_failed_workspaces(self) -> int:
        """Schedule cleanup of workspaces FAILED for longer than the grace period."""
        cutoff = self.clock() - self.grace_period
        workspaces = await self.workspace_service.get_failed_workspaces_before(cutoff)

        scheduled = 0
        for workspace in workspaces:
            if workspace.session_id is None:
                continue
            if self.request_cleanup(workspace.session_id, workspace.id) is not None:
                scheduled += 1

        if scheduled:
            logger.info(f"Scheduled cleanup of {scheduled} failed workspace(s)")
        return scheduled

    async def wait_for_pending(self):
        """Wait for every scheduled cleanup to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def get_failed_workspace_cleanup_service() -> FailedWorkspaceCleanupService:
    return FailedWorkspaceCleanupService()
