"""
Analysis Task Runner - One background unit of work per analysis id.

Cancellation is cooperative: cancel() sets the unit's token and the unit
checks it between pipeline stages.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from auditeng.config.errors import ConflictError

logger = logging.getLogger(__name__)

__all__ = ["AnalysisTaskRunner", "CancellationToken"]


class CancellationToken:
    """Cooperative cancellation flag for one unit of work."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


Work = Callable[[CancellationToken], Awaitable[None]]


class AnalysisTaskRunner:
    """
    Schedule analysis processing as asyncio tasks.

    At most one unit of work runs per analysis id; no lock is shared
    across different ids.

    Example:
        >>> runner = AnalysisTaskRunner()
        >>> runner.submit("an-1", process)
        >>> await runner.wait("an-1")
    """

    def __init__(self) -> None:
        self._units: dict[str, tuple[asyncio.Task[None], CancellationToken]] = {}

    def submit(self, analysis_id: str, work: Work) -> CancellationToken:
        """
        Start work for an analysis.

        Raises:
            ConflictError: A unit for the same id is still in flight
        """
        if self.is_running(analysis_id):
            raise ConflictError(
                f"Analysis {analysis_id} is already being processed",
                {"analysis_id": analysis_id},
            )

        token = CancellationToken()
        task = asyncio.create_task(work(token), name=f"analysis-{analysis_id}")
        self._units[analysis_id] = (task, token)
        task.add_done_callback(lambda t: self._on_done(analysis_id, t))
        logger.debug("Scheduled processing for analysis %s", analysis_id)
        return token

    def _on_done(self, analysis_id: str, task: asyncio.Task[None]) -> None:
        unit = self._units.get(analysis_id)
        if unit is not None and unit[0] is task:
            del self._units[analysis_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error("Processing for analysis %s crashed: %s", analysis_id, task.exception())

    def is_running(self, analysis_id: str) -> bool:
        unit = self._units.get(analysis_id)
        return unit is not None and not unit[0].done()

    def cancel(self, analysis_id: str) -> bool:
        """Request cooperative cancellation; False when nothing is in flight."""
        unit = self._units.get(analysis_id)
        if unit is None or unit[0].done():
            return False
        unit[1].cancel()
        logger.info("Cancellation requested for analysis %s", analysis_id)
        return True

    async def wait(self, analysis_id: str) -> None:
        """Wait for the unit of an analysis (no-op when none is in flight)."""
        unit = self._units.get(analysis_id)
        if unit is not None:
            await asyncio.gather(unit[0], return_exceptions=True)

    async def drain(self) -> None:
        """Wait for every unit in flight."""
        while self._units:
            await asyncio.gather(*(task for task, _ in list(self._units.values())), return_exceptions=True)

    @property
    def in_flight(self) -> int:
        return sum(1 for task, _ in self._units.values() if not task.done())
