# ballotledger/elections.py
# Election snapshots: ledger reads for write paths, degrading reads for display.
import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from .errors import AdapterError
from .ledger import LedgerAdapter
from .lifecycle import utcnow
from .models.election_model import Election, ElectionView
from .retry import RetryPolicy
from .storage import KIND_ELECTION, LocalCacheAdapter, LocalCacheEntry, election_key

logger = logging.getLogger(__name__)


class ElectionReader:
    def __init__(
        self,
        ledger: LedgerAdapter,
        cache: LocalCacheAdapter,
        retry: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.cache = cache
        self.retry = retry or RetryPolicy()
        self.clock = clock

    async def load(self, election_id: int) -> Election:
        """Authoritative snapshot for write paths. Never served from the cache."""
        observed_at, since = self.clock(), self.cache.revision(election_key(election_id))
        election = await self.retry.run(
            lambda: asyncio.shield(self.ledger.get_election_details(election_id)),
            f"load election {election_id}",
        )
        await self.remember(election, "ledger", observed_at=observed_at, since=since)
        return election

    async def read(self, election_id: int) -> ElectionView:
        """Snapshot for display; falls back to the cached copy when the ledger is unavailable."""
        try:
            election = await self.load(election_id)
            return ElectionView(election=election, source="ledger")
        except AdapterError as e:
            if not e.retryable:
                raise
            cached = await self._cached(election_id)
            if cached is None:
                raise
            logger.warning(f"Ledger unavailable, serving cached election {election_id}")
            return ElectionView(election=cached, source="cache", stale=True)

    async def list_all(self) -> List[ElectionView]:
        try:
            ids = await self.retry.run(lambda: asyncio.shield(self.ledger.list_election_ids()), "list elections")
        except AdapterError as e:
            if not e.retryable:
                raise
            logger.warning("Ledger unavailable, listing elections from the local cache")
            entries = await self.cache.list_by_prefix("election:")
            views = []
            for entry in entries:
                if entry.kind != KIND_ELECTION:
                    continue
                views.append(ElectionView(election=Election(**entry.value), source="cache", stale=True))
            return sorted(views, key=lambda v: v.election.id)
        views = []
        for election_id in ids:
            views.append(await self.read(election_id))
        return views

    async def remember(
        self,
        election: Election,
        source: str,
        observed_at: Optional[datetime] = None,
        since: Optional[int] = None,
    ):
        entry = LocalCacheEntry(
            key=election_key(election.id),
            kind=KIND_ELECTION,
            value=election.model_dump(mode="json"),
            source=source,
            observed_at=observed_at or self.clock(),
        )
        try:
            await self.cache.set(entry.key, entry, since=since)
        except AdapterError as e:
            logger.warning(f"Could not cache election {election.id}: {e.message}")

    async def _cached(self, election_id: int) -> Optional[Election]:
        try:
            entry = await self.cache.get(election_key(election_id))
        except AdapterError:
            return None
        if entry is None or entry.kind != KIND_ELECTION:
            return None
        return Election(**entry.value)
