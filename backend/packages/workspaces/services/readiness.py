"""Bounded wait for a workspace to reach RUNNING."""

import asyncio
import time
from enum import StrEnum
from typing import Awaitable, Callable, Optional

from common.core.config import settings
from common.core.exceptions import (
    NotFoundError,
    WorkspaceNotReadyError,
    WorkspaceReadinessTimeoutError,
)
from common.core.telemetry import get_logger
from packages.workspaces.models.domain.workspace import Workspace, WorkspaceStatus

logger = get_logger(__name__)


class ReadinessState(StrEnum):
    POLLING = "POLLING"
    READY = "READY"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"


class WorkspaceReadinessWaiter:
    """
    Polls a workspace until it is RUNNING, FAILED, or the budget runs out.

    The budget is max_attempts polls spaced interval_seconds apart, further
    capped by an optional deadline on the injected monotonic clock. There is
    no sleep after the last poll.
    """

    def __init__(
        self,
        fetch_workspace: Callable[[int], Awaitable[Optional[Workspace]]],
        max_attempts: Optional[int] = None,
        interval_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fetch_workspace = fetch_workspace
        self.max_attempts = max_attempts or settings.workspace_wait_max_attempts
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else settings.workspace_wait_interval_seconds
        )
        self._sleep = sleep
        self._clock = clock

    async def wait_until_ready(
        self, workspace_id: int, deadline: Optional[float] = None
    ) -> Workspace:
        """
        Returns:
            The workspace as first observed RUNNING

        Raises:
            NotFoundError: the workspace disappeared while waiting
            WorkspaceNotReadyError: the workspace went FAILED
            WorkspaceReadinessTimeoutError: attempts or deadline exhausted
        """
        state = ReadinessState.POLLING
        attempt = 0
        workspace = None

        while state == ReadinessState.POLLING:
            attempt += 1
            workspace = await self.fetch_workspace(workspace_id)
            if workspace is None:
                raise NotFoundError(f"Workspace not found: {workspace_id}")

            if workspace.status == WorkspaceStatus.RUNNING:
                state = ReadinessState.READY
            elif workspace.status == WorkspaceStatus.FAILED:
                state = ReadinessState.FAILED
            elif attempt >= self.max_attempts:
                state = ReadinessState.TIMED_OUT
            elif (
                deadline is not None
                and self._clock() + self.interval_seconds > deadline
            ):
                state = ReadinessState.TIMED_OUT
            else:
                logger.info(
                    f"Waiting for workspace {workspace_id} ({workspace.status}), attempt {attempt}/{self.max_attempts}"
                )
                await self._sleep(self.interval_seconds)

        if state == ReadinessState.READY:
            logger.info(f"Workspace {workspace_id} is running after {attempt} attempt(s)")
            return workspace

        if state == ReadinessState.FAILED:
            raise WorkspaceNotReadyError(
                "Workspace failed to start", status=WorkspaceStatus.FAILED.value
            )

        raise WorkspaceReadinessTimeoutError(
            f"Workspace did not become ready within timeout: {workspace_id}",
            status=workspace.status.value,
        )
