# ballotledger/storage.py
# Process-local cache that bridges ledger/content outages.
import asyncio
import json
import logging
import os
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .errors import unreachable

logger = logging.getLogger(__name__)

KIND_REGISTRATION = "registration"
KIND_ALLOW_LIST = "allow_list"
KIND_ELECTION = "election"
KIND_VOTE = "vote"


def election_key(election_id: int) -> str:
    return f"election:{election_id}"


def voter_key(election_id: int, voter_address: str) -> str:
    return f"election:{election_id}:voter:{voter_address.lower()}"


class LocalCacheEntry(BaseModel):
    key: str
    kind: str
    value: Dict[str, Any]
    source: str
    observed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class KeyedLocks:
    """One asyncio.Lock per key, created on first use."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def __call__(self, key: str) -> asyncio.Lock:
        return self._locks[key]


class LocalCacheAdapter:
    """
    Key/value mirror of registrations, allow-list memberships and election
    snapshots. Optionally persisted to a JSON file.

    Writes are read-modify-write under a per-key lock: an entry observed
    earlier than the one already stored is dropped, so a slow stale write
    can never downgrade a fresher one. Each applied write bumps the key's
    revision; a writer that read revision() before going upstream passes it
    as `since` and loses to anything written in between.

    The JSON file is rewritten in a worker thread, one snapshot at a time.
    """

    backend = "cache"

    def __init__(self, path: Optional[str] = None):
        self.path = path or None
        self._entries: Dict[str, LocalCacheEntry] = {}
        self._revisions: Dict[str, int] = defaultdict(int)
        self._locks = KeyedLocks()
        self._file_lock = asyncio.Lock()
        if self.path:
            self._entries = self._read_file()

    # --- persistence (same approach as a JSON dummy DB) ---

    def _read_file(self) -> Dict[str, LocalCacheEntry]:
        """
        Read the cache file safely.
        If the file is missing, empty or corrupted, start from an empty cache.
        """
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        try:
            with open(self.path, "r") as f:
                raw = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            logger.warning(f"Cache file {self.path} is not valid JSON, resetting")
            return {}
        entries = {}
        for key, data in raw.get("entries", {}).items():
            try:
                entries[key] = LocalCacheEntry(**data)
            except ValueError as e:
                logger.warning(f"Dropping unreadable cache entry {key}: {e}")
        return entries

    def _write_file(self, data: Dict[str, Any]):
        try:
            with open(self.path, "w") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            raise unreachable(f"cannot write cache file {self.path}: {e}", self.backend)

    async def _persist(self):
        if not self.path:
            return
        async with self._file_lock:
            # Snapshot taken inside the lock so the last write on disk is the newest
            data = {"entries": {k: e.model_dump(mode="json") for k, e in self._entries.items()}}
            await asyncio.to_thread(self._write_file, data)

    # --- adapter interface ---

    def revision(self, key: str) -> int:
        return self._revisions[key]

    async def get(self, key: str) -> Optional[LocalCacheEntry]:
        async with self._locks(key):
            entry = self._entries.get(key)
            return entry.model_copy() if entry else None

    async def set(self, key: str, entry: LocalCacheEntry, since: Optional[int] = None) -> bool:
        """
        Store entry unless a fresher one is already cached. Returns True if applied.

        With `since`, the write is also dropped when the key has been written
        after that revision was read.
        """
        async with self._locks(key):
            current = self._entries.get(key)
            if since is not None and self._revisions[key] > since:
                logger.info(f"Ignoring cache write for {key} from {entry.source}: key changed while it was read")
                return False
            if current is not None and current.observed_at > entry.observed_at:
                logger.info(f"Ignoring stale cache write for {key} from {entry.source}")
                return False
            self._entries[key] = entry.model_copy(update={"key": key})
            self._revisions[key] += 1
            await self._persist()
            return True

    async def put(self, key: str, entry: LocalCacheEntry) -> str:
        await self.set(key, entry)
        return key

    async def list_by_prefix(self, prefix: str) -> List[LocalCacheEntry]:
        return [e.model_copy() for k, e in sorted(self._entries.items()) if k.startswith(prefix)]
