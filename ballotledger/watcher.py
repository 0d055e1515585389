# ballotledger/watcher.py
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from . import config
from .elections import ElectionReader
from .errors import AdapterError
from .lifecycle import ElectionStateMachine
from .models.election_model import ElectionStatus, ElectionView

logger = logging.getLogger(__name__)

StatusCallback = Callable[[ElectionView, ElectionStatus], Awaitable[None]]


class ElectionWatcher:
    """
    Re-evaluates one election's effective status on a fixed interval and
    calls on_change when it moves. Tied to its consumer: start() when the
    view opens, stop() (or leave the async with block) when it closes.
    """

    def __init__(
        self,
        election_id: int,
        elections: ElectionReader,
        state_machine: ElectionStateMachine,
        on_change: StatusCallback,
        interval: float = config.STATUS_POLL_SECONDS,
    ):
        self.election_id = election_id
        self.elections = elections
        self.state_machine = state_machine
        self.on_change = on_change
        self.interval = interval
        self.last_status: Optional[ElectionStatus] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def __aenter__(self) -> "ElectionWatcher":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    async def check_once(self) -> Optional[ElectionStatus]:
        try:
            view = await self.elections.read(self.election_id)
        except AdapterError as e:
            logger.warning(f"Status check for election {self.election_id} failed: {e.message}")
            return self.last_status
        status = self.state_machine.effective_status(view.election)
        if status != self.last_status:
            previous, self.last_status = self.last_status, status
            if previous is not None:
                logger.info(f"Election {self.election_id} moved from {previous.value} to {status.value}")
            await self.on_change(view, status)
        return status

    async def _run(self):
        while True:
            await self.check_once()
            if self.last_status == ElectionStatus.FINALIZED:
                return
            await asyncio.sleep(self.interval)
