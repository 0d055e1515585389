# ballotledger/ledger.py
# Ledger adapters: the chaincode interface, the Fabric peer CLI transport and
# the simulated ledger.
import asyncio
import hashlib
import json
import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from . import config
from .errors import AdapterError, NotFoundError, rejected, timeout, unreachable
from .models.election_model import Candidate, Election, ElectionStatus, ElectionType, derive_status
from .models.vote_model import LedgerReceipt
from .models.voter_model import VoterStatus

logger = logging.getLogger(__name__)


class LedgerCapability(str, Enum):
    VOTER_STATUS = "voter_status"        # getVoterStatus
    ALLOW_LIST = "allow_list"            # isVoterAllowed / addAllowedVoter
    ELECTION_STATUS = "election_status"  # explicit lifecycle status on chain
    VOTER_REGISTRY = "voter_registry"    # registerVoter / updateVoterStatus
    VOTE_RECEIPTS = "vote_receipts"      # verifyVoteReceipt
    ADMIN_REGISTRY = "admin_registry"    # owner, addAdmin / removeAdmin / admins


ALL_CAPABILITIES = frozenset(LedgerCapability)


def parse_capabilities(value: str) -> FrozenSet[LedgerCapability]:
    caps = set()
    for item in value.split(","):
        item = item.strip().lower()
        if item:
            caps.add(LedgerCapability(item))
    return frozenset(caps)


class LedgerCall(BaseModel):
    function: str
    args: List[Any] = Field(default_factory=list)
    # Identity the transaction is sent as; None for anonymous queries
    sender: Optional[str] = None


def to_timestamp(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def from_timestamp(value: int) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class LedgerAdapter:
    """
    Uniform request/response wrapper around the ledger.

    Subclasses implement get() (read-only chaincode query) and
    submit_transaction() (ordered write). Neither retries nor interprets
    business rules; transport failures surface as AdapterError. The typed
    helpers below only encode arguments and decode results.

    Capabilities are fixed at construction. Calling a helper whose capability
    the deployed chaincode lacks raises AdapterError(REJECTED).
    """

    backend = "ledger"

    def __init__(self, capabilities: Iterable[LedgerCapability] = ALL_CAPABILITIES):
        self.capabilities: FrozenSet[LedgerCapability] = frozenset(capabilities)

    def supports(self, capability: LedgerCapability) -> bool:
        return capability in self.capabilities

    def _require(self, capability: LedgerCapability):
        if capability not in self.capabilities:
            raise rejected(f"ledger does not support {capability.value}", self.backend)

    # --- transport, provided by subclasses ---

    async def get(self, call: LedgerCall) -> Any:
        raise NotImplementedError

    async def submit_transaction(self, call: LedgerCall) -> LedgerReceipt:
        raise NotImplementedError

    async def put(self, key: str, value: List[Any]) -> str:
        receipt = await self._submit(LedgerCall(function=key, args=list(value)))
        return receipt.transaction_id

    async def _submit(self, call: LedgerCall) -> LedgerReceipt:
        receipt = await self.submit_transaction(call)
        if not receipt.success:
            raise rejected(f"transaction {call.function} failed on the ledger", self.backend)
        return receipt

    # --- reads ---

    async def list_election_ids(self) -> List[int]:
        ids = await self.get(LedgerCall(function="ListElections"))
        return [int(i) for i in ids or []]

    async def get_election_details(self, election_id: int) -> Election:
        raw = await self.get(LedgerCall(function="GetElectionDetails", args=[election_id]))
        if not raw:
            raise NotFoundError(f"Election {election_id} not found.")
        candidates = []
        for candidate_id in range(1, int(raw.get("candidate_count", 0)) + 1):
            candidates.append(await self.get_candidate(election_id, candidate_id))
        return self._decode_election(raw, candidates)

    def _decode_election(self, raw: Dict[str, Any], candidates: List[Candidate]) -> Election:
        try:
            if self.supports(LedgerCapability.ELECTION_STATUS):
                status = ElectionStatus.from_code(raw["status"])
            else:
                status = ElectionStatus.FINALIZED if raw.get("finalized") else ElectionStatus.REGISTRATION
            voting_start = from_timestamp(raw["voting_start"])
            return Election(
                id=int(raw["id"]),
                title=raw["title"],
                description_ref=raw.get("description_ref") or None,
                registration_start=from_timestamp(raw.get("registration_start", raw["voting_start"])),
                voting_start=voting_start,
                voting_end=from_timestamp(raw["voting_end"]),
                status=status,
                election_type=ElectionType.from_code(int(raw.get("election_type", ElectionType.PRIVATE.code))),
                admin=str(raw["admin"]).lower(),
                candidates=candidates,
                total_votes=int(raw.get("total_votes", 0)),
                winning_candidate_id=raw.get("winning_candidate_id") or None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise rejected(f"malformed election record from ledger: {e}", self.backend)

    async def get_candidate(self, election_id: int, candidate_id: int) -> Candidate:
        raw = await self.get(LedgerCall(function="GetCandidate", args=[election_id, candidate_id]))
        if not raw:
            raise NotFoundError(f"Candidate {candidate_id} not found in election {election_id}.")
        try:
            return Candidate(
                id=int(raw["id"]),
                name=raw["name"],
                details_ref=raw.get("details_ref") or None,
                vote_count=int(raw.get("vote_count", 0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise rejected(f"malformed candidate record from ledger: {e}", self.backend)

    async def has_voted(self, election_id: int, voter: str) -> bool:
        return bool(await self.get(LedgerCall(function="HasVoted", args=[election_id, voter.lower()])))

    async def is_voter_allowed(self, election_id: int, voter: str) -> bool:
        self._require(LedgerCapability.ALLOW_LIST)
        return bool(await self.get(LedgerCall(function="IsVoterAllowed", args=[election_id, voter.lower()])))

    async def get_voter_status(self, election_id: int, voter: str) -> VoterStatus:
        self._require(LedgerCapability.VOTER_STATUS)
        code = await self.get(LedgerCall(function="GetVoterStatus", args=[election_id, voter.lower()]))
        try:
            return VoterStatus.from_code(int(code))
        except (TypeError, ValueError):
            raise rejected(f"unknown voter status code from ledger: {code!r}", self.backend)

    async def verify_vote_receipt(self, election_id: int, voter: str, receipt: str) -> bool:
        self._require(LedgerCapability.VOTE_RECEIPTS)
        return bool(await self.get(LedgerCall(function="VerifyVoteReceipt", args=[election_id, voter.lower(), receipt])))

    async def get_owner(self) -> str:
        self._require(LedgerCapability.ADMIN_REGISTRY)
        owner = await self.get(LedgerCall(function="GetOwner"))
        if not owner:
            raise rejected("ledger reports no owner", self.backend)
        return str(owner).lower()

    async def is_admin(self, address: str) -> bool:
        self._require(LedgerCapability.ADMIN_REGISTRY)
        return bool(await self.get(LedgerCall(function="IsAdmin", args=[address.lower()])))

    # --- writes ---

    async def create_election(
        self,
        sender: str,
        title: str,
        description_ref: Optional[str],
        registration_start: datetime,
        voting_start: datetime,
        voting_end: datetime,
        election_type: ElectionType = ElectionType.PRIVATE,
        status: ElectionStatus = ElectionStatus.REGISTRATION,
    ) -> Tuple[int, LedgerReceipt]:
        receipt = await self._submit(LedgerCall(
            function="CreateElection",
            sender=sender.lower(),
            args=[
                title,
                description_ref or "",
                to_timestamp(registration_start),
                to_timestamp(voting_start),
                to_timestamp(voting_end),
                election_type.code,
                status.rank,
            ],
        ))
        try:
            return int(receipt.payload), receipt
        except (TypeError, ValueError):
            raise rejected(f"CreateElection returned no election id: {receipt.payload!r}", self.backend)

    async def add_admin(self, sender: str, address: str) -> LedgerReceipt:
        self._require(LedgerCapability.ADMIN_REGISTRY)
        return await self._submit(LedgerCall(function="AddAdmin", sender=sender.lower(), args=[address.lower()]))

    async def remove_admin(self, sender: str, address: str) -> LedgerReceipt:
        self._require(LedgerCapability.ADMIN_REGISTRY)
        return await self._submit(LedgerCall(function="RemoveAdmin", sender=sender.lower(), args=[address.lower()]))

    async def add_candidate(self, sender: str, election_id: int, name: str, details_ref: Optional[str]) -> LedgerReceipt:
        return await self._submit(LedgerCall(
            function="AddCandidate", sender=sender.lower(), args=[election_id, name, details_ref or ""],
        ))

    async def register_voter(self, voter: str, election_id: int, verification_ref: str) -> LedgerReceipt:
        self._require(LedgerCapability.VOTER_REGISTRY)
        return await self._submit(LedgerCall(
            function="RegisterVoter", sender=voter.lower(), args=[election_id, verification_ref],
        ))

    async def update_voter_status(self, sender: str, election_id: int, voter: str, status: VoterStatus) -> LedgerReceipt:
        self._require(LedgerCapability.VOTER_REGISTRY)
        return await self._submit(LedgerCall(
            function="UpdateVoterStatus", sender=sender.lower(), args=[election_id, voter.lower(), status.code],
        ))

    async def add_allowed_voter(self, sender: str, election_id: int, voter: str) -> LedgerReceipt:
        self._require(LedgerCapability.ALLOW_LIST)
        return await self._submit(LedgerCall(
            function="AddAllowedVoter", sender=sender.lower(), args=[election_id, voter.lower()],
        ))

    async def update_election_status(self, sender: str, election_id: int, status: ElectionStatus) -> LedgerReceipt:
        self._require(LedgerCapability.ELECTION_STATUS)
        return await self._submit(LedgerCall(
            function="UpdateElectionStatus", sender=sender.lower(), args=[election_id, status.rank],
        ))

    async def vote(self, voter: str, election_id: int, candidate_id: int) -> LedgerReceipt:
        return await self._submit(LedgerCall(
            function="Vote", sender=voter.lower(), args=[election_id, candidate_id],
        ))

    async def finalize_election(self, sender: str, election_id: int) -> LedgerReceipt:
        return await self._submit(LedgerCall(
            function="FinalizeElection", sender=sender.lower(), args=[election_id],
        ))


# ------------------------------
# Hyperledger Fabric peer CLI
# ------------------------------

_TXID_PATTERNS = [
    re.compile(r"Transaction ID:\s*([a-f0-9]+)", re.I),
    re.compile(r"txid \[([a-f0-9]+)\]", re.I),
]
_PAYLOAD_PATTERN = re.compile(r'payload:"((?:[^"\\]|\\.)*)"')
_UNREACHABLE_MARKERS = ("connection refused", "failed to connect", "no such host", "unavailable", "error getting endorser client")
_TIMEOUT_MARKERS = ("context deadline exceeded", "timed out", "timeout expired")


class FabricLedgerAdapter(LedgerAdapter):
    """
    Talks to the election chaincode through the `peer chaincode` CLI.

    Queries print the JSON payload on stdout. Invokes wait for the commit
    event and print the transaction id and payload on stderr.
    """

    def __init__(
        self,
        channel: str = config.FABRIC_CHANNEL,
        chaincode: str = config.FABRIC_CHAINCODE,
        orderer: str = config.FABRIC_ORDERER,
        peer: str = config.FABRIC_PEER,
        orderer_ca: str = config.FABRIC_ORDERER_CA,
        peer_tls_root: str = config.FABRIC_PEER_TLS_ROOT,
        timeout_seconds: float = config.LEDGER_TIMEOUT_SECONDS,
        capabilities: Iterable[LedgerCapability] = parse_capabilities(config.FABRIC_CAPABILITIES),
        peer_binary: str = "peer",
    ):
        super().__init__(capabilities)
        self.channel = channel
        self.chaincode = chaincode
        self.orderer = orderer
        self.peer = peer
        self.orderer_ca = orderer_ca
        self.peer_tls_root = peer_tls_root
        self.timeout_seconds = timeout_seconds
        self.peer_binary = peer_binary

    @staticmethod
    def _ctor(call: LedgerCall) -> str:
        args = [call.function]
        if call.sender is not None:
            args.append(call.sender)
        args.extend(a if isinstance(a, str) else json.dumps(a) for a in call.args)
        return json.dumps({"Args": args})

    def _query_command(self, call: LedgerCall) -> List[str]:
        return [
            self.peer_binary, "chaincode", "query",
            "-C", self.channel, "-n", self.chaincode,
            "-c", self._ctor(call),
        ]

    def _invoke_command(self, call: LedgerCall) -> List[str]:
        cmd = [self.peer_binary, "chaincode", "invoke", "-o", self.orderer]
        if self.orderer_ca:
            cmd += ["--tls", "--cafile", self.orderer_ca]
        cmd += ["-C", self.channel, "-n", self.chaincode, "--peerAddresses", self.peer]
        if self.peer_tls_root:
            cmd += ["--tlsRootCertFiles", self.peer_tls_root]
        cmd += ["--waitForEvent", "-c", self._ctor(call)]
        return cmd

    async def _run(self, cmd: List[str], function: str) -> Tuple[str, str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise unreachable(f"cannot start peer CLI: {e}", self.backend)
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise timeout(f"{function} did not complete within {self.timeout_seconds}s", self.backend)
        out = stdout.decode("utf-8", errors="replace").strip()
        err = stderr.decode("utf-8", errors="replace").strip()
        if proc.returncode != 0:
            raise self._classify_failure(function, err or out)
        return out, err

    def _classify_failure(self, function: str, output: str) -> AdapterError:
        lowered = output.lower()
        if any(marker in lowered for marker in _TIMEOUT_MARKERS):
            return timeout(f"{function} timed out: {output[:300]}", self.backend)
        if any(marker in lowered for marker in _UNREACHABLE_MARKERS):
            return unreachable(f"{function}: ledger unreachable: {output[:300]}", self.backend)
        return rejected(f"{function} rejected: {output[:300]}", self.backend)

    async def get(self, call: LedgerCall) -> Any:
        out, _ = await self._run(self._query_command(call), call.function)
        if not out:
            return None
        try:
            return json.loads(out)
        except json.JSONDecodeError:
            raise rejected(f"{call.function} returned non-JSON payload: {out[:200]!r}", self.backend)

    async def submit_transaction(self, call: LedgerCall) -> LedgerReceipt:
        out, err = await self._run(self._invoke_command(call), call.function)
        output = "\n".join(part for part in (err, out) if part)
        txn_id = None
        for pattern in _TXID_PATTERNS:
            match = pattern.search(output)
            if match:
                txn_id = match.group(1)
                break
        payload_match = _PAYLOAD_PATTERN.search(output)
        payload = payload_match.group(1).encode().decode("unicode_escape") if payload_match else None
        success = "status:200" in output.replace(" ", "") or txn_id is not None
        logger.info(f"Ledger invoke {call.function}: txid={txn_id} success={success}")
        return LedgerReceipt(transaction_id=txn_id, success=success, payload=payload)


# ------------------------------
# Simulated ledger
# ------------------------------

class ChaincodeError(Exception):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryLedgerAdapter(LedgerAdapter):
    """
    Simulated ledger enforcing the same rules as the election chaincode.

    Used when the backend mode is SIMULATED and in tests. Chaincode rule
    violations are reported as AdapterError(REJECTED), exactly as the Fabric
    adapter reports an endorsement failure.

    The admin registry needs an owner; without one the capability is not
    offered and any sender may create elections.
    """

    def __init__(
        self,
        capabilities: Iterable[LedgerCapability] = ALL_CAPABILITIES,
        clock: Callable[[], datetime] = _utcnow,
        owner: Optional[str] = None,
    ):
        capabilities = frozenset(capabilities)
        if not owner:
            capabilities -= {LedgerCapability.ADMIN_REGISTRY}
        super().__init__(capabilities)
        self.clock = clock
        self.owner = owner.lower() if owner else None
        self._admins: set = {self.owner} if self.owner else set()
        self._elections: Dict[int, Dict[str, Any]] = {}
        self._candidates: Dict[int, List[Dict[str, Any]]] = {}
        self._votes: Dict[Tuple[int, str], Dict[str, Any]] = {}
        self._voter_status: Dict[Tuple[int, str], int] = {}
        self._allowed: set = set()
        self._tx_counter = 0
        self.transactions: List[LedgerCall] = []

    # --- transport ---

    async def get(self, call: LedgerCall) -> Any:
        handler = getattr(self, f"_q_{call.function}", None)
        if handler is None:
            raise rejected(f"unknown chaincode query {call.function}", self.backend)
        try:
            return handler(*call.args)
        except ChaincodeError as e:
            raise rejected(f"{call.function}: {e}", self.backend)

    async def submit_transaction(self, call: LedgerCall) -> LedgerReceipt:
        handler = getattr(self, f"_tx_{call.function}", None)
        if handler is None:
            raise rejected(f"unknown chaincode function {call.function}", self.backend)
        try:
            payload = handler(call.sender, *call.args)
        except ChaincodeError as e:
            logger.info(f"Simulated ledger rejected {call.function}: {e}")
            raise rejected(f"{call.function}: {e}", self.backend)
        self._tx_counter += 1
        self.transactions.append(call)
        txn_id = hashlib.sha256(f"{self._tx_counter}:{call.model_dump_json()}".encode()).hexdigest()
        return LedgerReceipt(transaction_id=txn_id, success=True, payload=None if payload is None else str(payload))

    # --- helpers ---

    def _election(self, election_id) -> Dict[str, Any]:
        election = self._elections.get(int(election_id))
        if election is None:
            raise ChaincodeError("Election does not exist")
        return election

    def _require_admin(self, election: Dict[str, Any], sender: Optional[str]):
        if sender is None or sender.lower() != election["admin"]:
            raise ChaincodeError("Only election admin can call this function")

    def _status(self, election: Dict[str, Any]) -> ElectionStatus:
        return derive_status(
            ElectionStatus.from_code(election["status"]),
            from_timestamp(election["voting_start"]),
            from_timestamp(election["voting_end"]),
            self.clock(),
        )

    # --- queries ---

    def _q_ListElections(self):
        return sorted(self._elections)

    def _q_GetElectionDetails(self, election_id):
        if int(election_id) not in self._elections:
            return None
        election = dict(self._elections[int(election_id)])
        election["candidate_count"] = len(self._candidates[election["id"]])
        election["finalized"] = election["status"] == ElectionStatus.FINALIZED.rank
        return election

    def _q_GetCandidate(self, election_id, candidate_id):
        candidates = self._candidates.get(int(election_id))
        if candidates is None or not 1 <= int(candidate_id) <= len(candidates):
            return None
        return dict(candidates[int(candidate_id) - 1])

    def _q_HasVoted(self, election_id, voter):
        self._election(election_id)
        return (int(election_id), voter.lower()) in self._votes

    def _q_IsVoterAllowed(self, election_id, voter):
        self._election(election_id)
        return (int(election_id), voter.lower()) in self._allowed

    def _q_GetVoterStatus(self, election_id, voter):
        self._election(election_id)
        return self._voter_status.get((int(election_id), voter.lower()), VoterStatus.NONE.code)

    def _q_VerifyVoteReceipt(self, election_id, voter, receipt):
        vote = self._votes.get((int(election_id), voter.lower()))
        return vote is not None and vote["receipt"] == receipt

    def _q_GetOwner(self):
        return self.owner

    def _q_IsAdmin(self, address):
        return address.lower() in self._admins

    # --- transactions ---

    def _tx_CreateElection(self, sender, title, description_ref, registration_start, voting_start, voting_end,
                           election_type=ElectionType.PRIVATE.code, status=ElectionStatus.REGISTRATION.rank):
        if sender is None:
            raise ChaincodeError("Sender required")
        if self.supports(LedgerCapability.ADMIN_REGISTRY) and sender.lower() not in self._admins:
            raise ChaincodeError("Only admins can create elections")
        if int(voting_end) <= int(voting_start):
            raise ChaincodeError("End time must be after start time")
        if int(status) not in (ElectionStatus.DRAFT.rank, ElectionStatus.REGISTRATION.rank):
            raise ChaincodeError("New elections start in DRAFT or REGISTRATION")
        election_id = len(self._elections) + 1
        self._elections[election_id] = {
            "id": election_id,
            "title": title,
            "description_ref": description_ref,
            "registration_start": int(registration_start),
            "voting_start": int(voting_start),
            "voting_end": int(voting_end),
            "status": int(status),
            "election_type": int(election_type),
            "admin": sender.lower(),
            "total_votes": 0,
            "winning_candidate_id": None,
        }
        self._candidates[election_id] = []
        return election_id

    def _require_owner(self, sender: Optional[str]):
        if not self.supports(LedgerCapability.ADMIN_REGISTRY):
            raise ChaincodeError("Admin registry is not enabled")
        if sender is None or sender.lower() != self.owner:
            raise ChaincodeError("Only owner can call this function")

    def _tx_AddAdmin(self, sender, address):
        self._require_owner(sender)
        self._admins.add(address.lower())
        return None

    def _tx_RemoveAdmin(self, sender, address):
        self._require_owner(sender)
        if address.lower() == self.owner:
            raise ChaincodeError("Owner cannot be removed")
        self._admins.discard(address.lower())
        return None

    def _tx_AddCandidate(self, sender, election_id, name, details_ref):
        election = self._election(election_id)
        self._require_admin(election, sender)
        if self.clock() >= from_timestamp(election["voting_start"]):
            raise ChaincodeError("Cannot add candidates after voting has started")
        candidates = self._candidates[election["id"]]
        candidate_id = len(candidates) + 1
        candidates.append({"id": candidate_id, "name": name, "details_ref": details_ref, "vote_count": 0})
        return candidate_id

    def _tx_RegisterVoter(self, sender, election_id, verification_ref):
        election = self._election(election_id)
        if self._status(election) not in (ElectionStatus.REGISTRATION, ElectionStatus.ACTIVE):
            raise ChaincodeError("Registration is closed")
        key = (election["id"], sender.lower())
        current = self._voter_status.get(key, VoterStatus.NONE.code)
        if current not in (VoterStatus.NONE.code, VoterStatus.REJECTED.code):
            raise ChaincodeError("Voter already registered")
        self._voter_status[key] = VoterStatus.PENDING.code
        return None

    def _tx_UpdateVoterStatus(self, sender, election_id, voter, code):
        election = self._election(election_id)
        self._require_admin(election, sender)
        key = (election["id"], voter.lower())
        if self._voter_status.get(key) == VoterStatus.BLACKLISTED.code:
            raise ChaincodeError("Voter is blacklisted")
        status = VoterStatus.from_code(int(code))
        self._voter_status[key] = status.code
        if status == VoterStatus.APPROVED:
            self._allowed.add(key)
        else:
            self._allowed.discard(key)
        return None

    def _tx_AddAllowedVoter(self, sender, election_id, voter):
        election = self._election(election_id)
        self._require_admin(election, sender)
        key = (election["id"], voter.lower())
        if self._voter_status.get(key) == VoterStatus.BLACKLISTED.code:
            raise ChaincodeError("Voter is blacklisted")
        self._allowed.add(key)
        self._voter_status[key] = VoterStatus.APPROVED.code
        return None

    def _tx_UpdateElectionStatus(self, sender, election_id, code):
        election = self._election(election_id)
        self._require_admin(election, sender)
        target = ElectionStatus.from_code(int(code))
        if target == ElectionStatus.FINALIZED or target.rank != self._status(election).rank + 1:
            raise ChaincodeError("Invalid status transition")
        election["status"] = target.rank
        return None

    def _tx_Vote(self, sender, election_id, candidate_id):
        election = self._election(election_id)
        if self._status(election) != ElectionStatus.ACTIVE:
            raise ChaincodeError("Election is not active")
        candidates = self._candidates[election["id"]]
        if not 1 <= int(candidate_id) <= len(candidates):
            raise ChaincodeError("Invalid candidate")
        key = (election["id"], sender.lower())
        if key in self._votes:
            raise ChaincodeError("Already voted")
        requires_registration = ElectionType.from_code(election["election_type"]).requires_registration
        if requires_registration and key not in self._allowed:
            raise ChaincodeError("Voter is not allowed")
        cast_at = self.clock()
        receipt = hashlib.sha256(f"{election['id']}|{key[1]}|{candidate_id}|{cast_at.isoformat()}".encode()).hexdigest()
        self._votes[key] = {"candidate_id": int(candidate_id), "cast_at": cast_at, "receipt": receipt}
        candidates[int(candidate_id) - 1]["vote_count"] += 1
        election["total_votes"] += 1
        return receipt

    def _tx_FinalizeElection(self, sender, election_id):
        election = self._election(election_id)
        self._require_admin(election, sender)
        if election["status"] == ElectionStatus.FINALIZED.rank:
            raise ChaincodeError("Election already finalized")
        if self._status(election) != ElectionStatus.ENDED:
            raise ChaincodeError("Election has not ended")
        if election["total_votes"] == 0:
            raise ChaincodeError("No votes cast")
        candidates = self._candidates[election["id"]]
        best = max(c["vote_count"] for c in candidates)
        winner = min(c["id"] for c in candidates if c["vote_count"] == best)
        election["status"] = ElectionStatus.FINALIZED.rank
        election["winning_candidate_id"] = winner
        return winner
