# tests/conftest.py
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List

import pytest
from cryptography.fernet import Fernet

from ballotledger.content import InMemoryContentAdapter
from ballotledger.coordinator import Coordinator
from ballotledger.errors import AdapterError, timeout
from ballotledger.ledger import ALL_CAPABILITIES, InMemoryLedgerAdapter, LedgerCall
from ballotledger.retry import RetryPolicy
from ballotledger.security import VerificationCipher
from ballotledger.storage import LocalCacheAdapter

ADMIN = "0x" + "a" * 40
VOTER = "0x" + "b" * 40
VOTER_2 = "0x" + "c" * 40
VOTER_3 = "0x" + "d" * 40
STRANGER = "0x" + "e" * 40

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FaultyLedger(InMemoryLedgerAdapter):
    """
    Simulated ledger with scripted failures.

    fail(function, *errors) queues errors raised before the call reaches the
    chaincode. commit_then_timeout(function) lets the next call commit and
    then reports a TIMEOUT, like a transaction whose commit event was missed.
    hold(function) parks calls before they reach the chaincode; hold_reply(function)
    parks the next call after its answer was read, until the event is set.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.failures: Dict[str, List[AdapterError]] = {}
        self.ambiguous: Dict[str, int] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.reply_gates: Dict[str, asyncio.Event] = {}
        self.calls: List[str] = []

    def fail(self, function: str, *errors: AdapterError):
        self.failures.setdefault(function, []).extend(errors)

    def commit_then_timeout(self, function: str, times: int = 1):
        self.ambiguous[function] = self.ambiguous.get(function, 0) + times

    def hold(self, function: str) -> asyncio.Event:
        self.gates[function] = asyncio.Event()
        return self.gates[function]

    def hold_reply(self, function: str) -> asyncio.Event:
        self.reply_gates[function] = asyncio.Event()
        return self.reply_gates[function]

    async def _before(self, call: LedgerCall):
        self.calls.append(call.function)
        gate = self.gates.get(call.function)
        if gate is not None:
            await gate.wait()
        queued = self.failures.get(call.function)
        if queued:
            raise queued.pop(0)

    async def get(self, call: LedgerCall):
        await self._before(call)
        answer = await super().get(call)
        gate = self.reply_gates.pop(call.function, None)
        if gate is not None:
            await gate.wait()
        return answer

    async def submit_transaction(self, call: LedgerCall):
        await self._before(call)
        receipt = await super().submit_transaction(call)
        if self.ambiguous.get(call.function):
            self.ambiguous[call.function] -= 1
            raise timeout(f"{call.function} commit event not received", self.backend)
        return receipt


class FaultyContent(InMemoryContentAdapter):
    def __init__(self):
        super().__init__()
        self.failures: Dict[str, List[AdapterError]] = {}

    def fail(self, operation: str, *errors: AdapterError):
        self.failures.setdefault(operation, []).extend(errors)

    def _check(self, operation: str):
        queued = self.failures.get(operation)
        if queued:
            raise queued.pop(0)

    async def store(self, doc):
        self._check("store")
        return await super().store(doc)

    async def fetch(self, address):
        self._check("fetch")
        return await super().fetch(address)

    async def list_by_election(self, election_id):
        self._check("list_by_election")
        return await super().list_by_election(election_id)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def retry(sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)

    return RetryPolicy(max_attempts=3, delay=2.0, sleep=fake_sleep)


@pytest.fixture
def capabilities():
    return ALL_CAPABILITIES


@pytest.fixture
def ledger(clock, capabilities):
    return FaultyLedger(capabilities=capabilities, clock=clock, owner=ADMIN)


@pytest.fixture
def content():
    return FaultyContent()


@pytest.fixture
def cache():
    return LocalCacheAdapter()


@pytest.fixture
def cipher():
    return VerificationCipher(Fernet(Fernet.generate_key()))


@pytest.fixture
def coordinator(ledger, content, cache, cipher, retry, clock):
    return Coordinator(ledger, content, cache, cipher, retry=retry, clock=clock)


async def open_election(coordinator, clock, candidates=("Alice", "Bob"), **kwargs):
    """Election whose registration is open now and whose voting starts in an hour."""
    election = await coordinator.create_election(
        ADMIN,
        "Student council",
        registration_start=clock(),
        voting_start=clock() + timedelta(hours=1),
        voting_end=clock() + timedelta(hours=2),
        **kwargs,
    )
    for name in candidates:
        election = await coordinator.add_candidate(election.id, name, ADMIN)
    return election


async def approved_voter(coordinator, election_id, voter):
    await coordinator.register_voter(election_id, voter, "student-id:1234")
    return await coordinator.approve_voter(election_id, voter, ADMIN)
