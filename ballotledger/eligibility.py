# ballotledger/eligibility.py
# Voter eligibility across ledger, content store and local cache.
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional, TypeVar

from .content import ContentAdapter, current_registrations
from .errors import AdapterError
from .ledger import LedgerAdapter, LedgerCapability
from .lifecycle import utcnow
from .models.voter_model import EligibilityResult, EligibilitySource, VoterRegistration, VoterStatus
from .retry import RetryPolicy
from .storage import KIND_ALLOW_LIST, KIND_REGISTRATION, LocalCacheAdapter, LocalCacheEntry, voter_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EligibilityResolver:
    """
    resolve() asks the ledger first, then the content store, then the local
    cache, and returns the first successful answer tagged with its source.
    Answers from two sources are never merged.

    Every successful upstream read refreshes the cache entry for the key,
    stamped with the time the read was issued. A write that reached the
    cache while the read was in flight wins over the read's answer. Failed
    reads leave the cache untouched. If the caller is cancelled while
    an upstream request is in flight, the request completes but its answer is
    discarded.
    """

    def __init__(
        self,
        ledger: LedgerAdapter,
        content: ContentAdapter,
        cache: LocalCacheAdapter,
        retry: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.content = content
        self.cache = cache
        self.retry = retry or RetryPolicy()
        self.clock = clock

    async def resolve(self, election_id: int, voter_address: str) -> EligibilityResult:
        voter = voter_address.lower()
        key = voter_key(election_id, voter)

        ledger_note = "ledger has no voter registry"
        if self._ledger_answers():
            observed_at, since = self.clock(), self.cache.revision(key)
            try:
                status = await self._retried(lambda: self._ledger_status(election_id, voter), f"ledger eligibility {election_id}/{voter}")
            except AdapterError as e:
                if not e.retryable:
                    raise
                ledger_note = f"ledger {e.kind.value}"
                logger.warning(f"Ledger unavailable for eligibility of {voter} in election {election_id}, trying content store")
            else:
                result = EligibilityResult(
                    election_id=election_id, voter_address=voter, status=status,
                    source=EligibilitySource.LEDGER, reason="ledger verdict",
                )
                await self.remember(election_id, voter, status, EligibilitySource.LEDGER, observed_at=observed_at, since=since)
                return result

        observed_at, since = self.clock(), self.cache.revision(key)
        try:
            registration = await self._retried(lambda: self._content_registration(election_id, voter), f"content registration {election_id}/{voter}")
        except AdapterError as e:
            if not e.retryable:
                raise
            logger.warning(f"Content store unavailable for {voter} in election {election_id}, falling back to local cache")
        else:
            status = registration.status if registration else VoterStatus.NONE
            result = EligibilityResult(
                election_id=election_id, voter_address=voter, status=status,
                source=EligibilitySource.CONTENT,
                reason=f"{ledger_note}; registration record" if registration else f"{ledger_note}; no registration record",
            )
            await self.remember(
                election_id, voter, status, EligibilitySource.CONTENT, registration, observed_at=observed_at, since=since,
            )
            return result

        entry = await self._cached(election_id, voter)
        if entry is None:
            return EligibilityResult(
                election_id=election_id, voter_address=voter, status=VoterStatus.NONE,
                source=EligibilitySource.NONE, reason="no source answered and nothing cached",
            )
        try:
            status = VoterStatus.parse(entry.value.get("status", VoterStatus.NONE.value))
        except ValueError:
            status = VoterStatus.NONE
        return EligibilityResult(
            election_id=election_id, voter_address=voter, status=status,
            source=EligibilitySource.CACHE, stale=True,
            reason=f"cached from {entry.source} at {entry.observed_at.isoformat()}",
        )

    async def _retried(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        # shield: a cancelled caller lets the request finish but never sees its result
        return await self.retry.run(lambda: asyncio.shield(operation()), description)

    def _ledger_answers(self) -> bool:
        return self.ledger.supports(LedgerCapability.VOTER_STATUS) or self.ledger.supports(LedgerCapability.ALLOW_LIST)

    async def _ledger_status(self, election_id: int, voter: str) -> VoterStatus:
        if self.ledger.supports(LedgerCapability.VOTER_STATUS):
            return await self.ledger.get_voter_status(election_id, voter)
        # Narrower allow-list projection of the registration
        allowed = await self.ledger.is_voter_allowed(election_id, voter)
        return VoterStatus.APPROVED if allowed else VoterStatus.NONE

    async def _content_registration(self, election_id: int, voter: str) -> Optional[VoterRegistration]:
        records = await self.content.list_by_election(election_id)
        return current_registrations(records).get(voter)

    async def _cached(self, election_id: int, voter: str) -> Optional[LocalCacheEntry]:
        try:
            return await self.cache.get(voter_key(election_id, voter))
        except AdapterError as e:
            logger.warning(f"Local cache read failed for {voter} in election {election_id}: {e.message}")
            return None

    async def remember(
        self,
        election_id: int,
        voter: str,
        status: VoterStatus,
        source: EligibilitySource,
        registration: Optional[VoterRegistration] = None,
        observed_at: Optional[datetime] = None,
        since: Optional[int] = None,
    ):
        value = {"status": status.value}
        kind = KIND_ALLOW_LIST
        if registration is not None:
            kind = KIND_REGISTRATION
            value.update(registration.model_dump(mode="json", exclude={"verification_data"}))
        entry = LocalCacheEntry(
            key=voter_key(election_id, voter), kind=kind, value=value,
            source=source.value, observed_at=observed_at or self.clock(),
        )
        try:
            await self.cache.set(entry.key, entry, since=since)
        except AdapterError as e:
            logger.warning(f"Could not refresh cached eligibility for {voter}: {e.message}")
