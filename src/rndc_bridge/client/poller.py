"""
Client-side reconciliation of a submitted batch.

A poller follows one batch at a time: idle -> polling -> done. It fetches the batch and its
submissions right away and then on a fixed interval until the server reports the batch as
completed, at which point exactly one summary notification is emitted.

Each start() opens a new poll session with its own cancellation flag. Every await is followed
by a check of that flag, so an answer that arrives after close() (or after a restart on another
batch) is dropped instead of overwriting newer state.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Protocol

from rndc_bridge.domain.models import Batch, SubmissionRecord
from rndc_bridge.exceptions import ConnectionFailure

logger = logging.getLogger(__name__)

COMPLETED_TITLE = "Procesamiento Completado"


class PollPhase(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    DONE = "done"


@dataclass(frozen=True)
class Notification:
    title: str
    message: str
    level: str  # info|success|warning|error
    batch_id: Optional[str] = None


class BatchSource(Protocol):
    async def fetch(self, batch_id: str) -> tuple[Batch, list[SubmissionRecord]]:
        ...


@dataclass
class PollState:
    batch_id: Optional[str] = None
    phase: PollPhase = PollPhase.IDLE
    batch: Optional[Batch] = None
    submissions: list[SubmissionRecord] = field(default_factory=list)
    last_error: Optional[str] = None

    @property
    def results(self) -> dict[str, SubmissionRecord]:
        ordered = sorted(self.submissions, key=lambda s: s.row_index)
        return {s.row_key: s for s in ordered}


@dataclass
class _Session:
    batch_id: str
    cancelled: bool = False


def completion_notice(batch: Batch) -> Notification:
    return Notification(
        title=COMPLETED_TITLE,
        message=f"{batch.success_count} exitosos, {batch.error_count} errores",
        level="warning" if batch.error_count > 0 else "success",
        batch_id=batch.id,
    )


class ReconciliationPoller:
    def __init__(
        self,
        source: BatchSource,
        interval: float = 2.0,
        notify: Optional[Callable[[Notification], None]] = None,
        name: str = "",
    ):
        self.source = source
        self.interval = interval
        self.notify = notify or (lambda notification: None)
        self.name = name
        self.state = PollState()
        self._session: Optional[_Session] = None
        self._task: Optional[asyncio.Task] = None
        self._in_flight: set[str] = set()
        self._notified: set[str] = set()

    @property
    def phase(self) -> PollPhase:
        return self.state.phase

    def start(self, batch_id: str) -> asyncio.Task:
        """Begin following batch_id. Must be called from a running event loop."""
        self.close()
        session = _Session(batch_id)
        self._session = session
        self.state = PollState(batch_id=batch_id, phase=PollPhase.POLLING)
        self._task = asyncio.get_running_loop().create_task(self._run(session))
        logger.info("polling started", extra={"poller": self.name, "batch_id": batch_id})
        return self._task

    async def refresh(self) -> None:
        """Fetch once now, e.g. to retry after a connection error."""
        session = self._session
        if session is None or session.cancelled:
            return
        await self._poll_once(session)

    def close(self) -> None:
        session, task = self._session, self._task
        self._session = None
        self._task = None
        if session is not None:
            session.cancelled = True
            logger.info("polling closed", extra={"poller": self.name, "batch_id": session.batch_id})
        if task is not None and not task.done():
            task.cancel()
        self.state = PollState()

    async def aclose(self) -> None:
        task = self._task
        self.close()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def wait(self) -> PollState:
        """Block until the current session ends (done or closed)."""
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        return self.state

    async def _run(self, session: _Session) -> None:
        while not session.cancelled:
            await self._poll_once(session)
            if session.cancelled or self.state.phase == PollPhase.DONE:
                return
            await asyncio.sleep(self.interval)

    async def _poll_once(self, session: _Session) -> None:
        batch_id = session.batch_id
        if batch_id in self._in_flight:
            return
        self._in_flight.add(batch_id)
        try:
            batch, submissions = await self.source.fetch(batch_id)
        except ConnectionFailure as exc:
            if not session.cancelled:
                logger.warning("poll failed", extra={"poller": self.name, "batch_id": batch_id, "error": str(exc)})
                self._poll_failed(batch_id, "Error de conexión", str(exc))
            return
        except Exception as exc:
            if not session.cancelled:
                logger.exception("unexpected poll answer", extra={"poller": self.name, "batch_id": batch_id})
                self._poll_failed(batch_id, "Respuesta inválida", str(exc) or type(exc).__name__)
            return
        finally:
            self._in_flight.discard(batch_id)

        if session.cancelled:
            return
        self.state.batch = batch
        self.state.submissions = submissions
        self.state.last_error = None
        if batch.is_completed:
            self._complete(batch)

    def _poll_failed(self, batch_id: str, title: str, message: str) -> None:
        """Keeps the last fetched view; only the first failure of a streak is notified."""
        first_failure = self.state.last_error is None
        self.state.last_error = message
        if first_failure:
            self.notify(Notification(title=title, message=message, level="error", batch_id=batch_id))

    def _complete(self, batch: Batch) -> None:
        self.state.phase = PollPhase.DONE
        if batch.id in self._notified:
            return
        self._notified.add(batch.id)
        logger.info(
            "batch reconciled",
            extra={"poller": self.name, "batch_id": batch.id, "success": batch.success_count, "error": batch.error_count},
        )
        self.notify(completion_notice(batch))
