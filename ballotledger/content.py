# ballotledger/content.py
# Content-addressed off-chain store: interface, addressing and the simulated store.
import hashlib
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models.voter_model import VoterRegistration

logger = logging.getLogger(__name__)


def content_address(doc: Dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON encoding. Identical documents share an address."""
    canonical = json.dumps(doc, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ContentAdapter:
    """
    Uniform wrapper around the off-chain store.

    Implementations translate transport failures into AdapterError and do not
    retry. There is no update in place: a changed object is stored again and
    names the address it supersedes.
    """

    backend = "content"

    async def store(self, doc: Dict[str, Any]) -> str:
        raise NotImplementedError

    async def fetch(self, address: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def list_by_election(self, election_id: int) -> List[Tuple[str, Dict[str, Any]]]:
        """All registration objects stored for an election, as (address, doc) pairs."""
        raise NotImplementedError

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        return await self.fetch(key)

    async def put(self, key: Optional[str], value: Dict[str, Any]) -> str:
        # The address is derived from the value; key is accepted for interface symmetry.
        return await self.store(value)


class InMemoryContentAdapter(ContentAdapter):
    """Simulated content store used in SIMULATED backend mode and in tests."""

    def __init__(self):
        self._objects: Dict[str, Dict[str, Any]] = {}

    async def store(self, doc: Dict[str, Any]) -> str:
        address = content_address(doc)
        self._objects.setdefault(address, json.loads(json.dumps(doc, default=str)))
        return address

    async def fetch(self, address: str) -> Optional[Dict[str, Any]]:
        doc = self._objects.get(address)
        return dict(doc) if doc is not None else None

    async def list_by_election(self, election_id: int) -> List[Tuple[str, Dict[str, Any]]]:
        return [
            (address, dict(doc))
            for address, doc in self._objects.items()
            if doc.get("kind") == "registration" and doc.get("election_id") == election_id
        ]


def current_registrations(records: Iterable[Tuple[str, Dict[str, Any]]]) -> Dict[str, VoterRegistration]:
    """
    Reduce every stored registration version to the current one per voter.

    A version is current when no other version supersedes it. If several
    unsuperseded versions exist (concurrent writers), the most recently
    updated wins, then the greater address, so the answer is deterministic.
    """
    parsed = []
    superseded = set()
    for address, doc in records:
        try:
            reg = VoterRegistration.from_document(doc, address=address)
        except ValueError as e:
            logger.warning(f"Skipping malformed registration {address}: {e}")
            continue
        parsed.append(reg)
        if reg.supersedes:
            superseded.add(reg.supersedes)

    current: Dict[str, VoterRegistration] = {}
    for reg in parsed:
        if reg.address in superseded:
            continue
        voter = reg.voter_address.lower()
        best = current.get(voter)
        if best is None or (reg.updated_at, reg.address) > (best.updated_at, best.address):
            current[voter] = reg
    return current
