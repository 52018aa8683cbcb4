"""
Attendance recalculation collaborator.

The external attendance service recomputes attendance percentages and
ticket allocations after the ledger changes. It is advisory: the call is
scheduled as a detached task after the local transaction commits, has its
own timeout, and its failures are logged and dropped.
"""

import asyncio
from typing import Any, Optional, Set

import httpx

from raidtracker.config import Config
from raidtracker.utils.exceptions import ExternalCollaboratorFailure
from raidtracker.utils.logger import setup_logger

logger = setup_logger(__name__)


class AttendanceRecalcClient:
    """Fire-and-forget client for the attendance recalculation endpoint."""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.url = Config.ATTENDANCE_RECALC_URL if url is None else url
        self.timeout = Config.ATTENDANCE_RECALC_TIMEOUT if timeout is None else timeout
        self._transport = transport
        self._background_tasks: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    @property
    def pending(self) -> int:
        return len(self._background_tasks)

    def notify(self, reason: str) -> Optional[asyncio.Task]:
        """
        Schedule a recalculation without waiting for it.

        Args:
            reason: Short description of the mutation, for the logs

        Returns:
            The background task, or None when the collaborator is disabled
        """
        if not self.enabled:
            logger.debug(f"Attendance recalculation disabled, skipping ({reason})")
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, attendance recalculation skipped ({reason})")
            return None

        task = loop.create_task(self.recalculate(reason))
        self._background_tasks.add(task)
        # Remove task from set when it completes to prevent memory leaks
        task.add_done_callback(self._background_tasks.discard)
        logger.info(f"Triggered background attendance recalculation after {reason}")
        return task

    async def recalculate(self, reason: str = "manual request") -> Optional[Any]:
        """
        Call the endpoint once. The response body is returned when it is
        JSON, otherwise None. Never raises.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            failure = ExternalCollaboratorFailure(self.url, f"{type(e).__name__}: {e}")
            logger.warning(f"{failure} ({reason})")
            return None
        except Exception as e:
            logger.error(f"Unexpected error calling attendance service ({reason}): {e}", exc_info=True)
            return None

        try:
            return response.json()
        except ValueError:
            return None

    async def drain(self):
        """Wait for scheduled recalculations, e.g. on shutdown."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
