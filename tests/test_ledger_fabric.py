# tests/test_ledger_fabric.py
import asyncio
import json

import pytest

from ballotledger import ledger as ledger_module
from ballotledger.errors import AdapterError, AdapterErrorKind, NotFoundError
from ballotledger.ledger import FabricLedgerAdapter, LedgerCall, LedgerCapability, parse_capabilities
from ballotledger.models import ElectionStatus, VoterStatus

ADMIN = "0x" + "a" * 40

INVOKE_OK = (
    "2026-03-01 12:00:00.000 UTC [chaincodeCmd] ClientWait -> txid [3f9a0c7e11] committed with status (VALID) at localhost:7051\n"
    "2026-03-01 12:00:00.001 UTC [chaincodeCmd] chaincodeInvokeOrQuery -> Chaincode invoke successful. result: status:200 payload:\"7\""
)


class FakeProcess:
    def __init__(self, stdout=b"", stderr=b"", returncode=0, hang=False):
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode
        self.hang = hang
        self.killed = False

    async def communicate(self):
        if self.hang:
            await asyncio.sleep(10)
        return self.stdout, self.stderr

    def kill(self):
        self.killed = True

    async def wait(self):
        return self.returncode


@pytest.fixture
def fabric():
    return FabricLedgerAdapter(
        channel="ballotchannel", chaincode="ballotledger", orderer="orderer.example.com:7050",
        peer="localhost:7051", orderer_ca="/tls/orderer.pem", peer_tls_root="/tls/peer.pem",
        timeout_seconds=0.05,
    )


@pytest.fixture
def commands(monkeypatch):
    """Record every CLI invocation and answer with the queued fake processes."""
    recorded = []
    queue = []

    async def fake_exec(*cmd, **kwargs):
        recorded.append(list(cmd))
        proc = queue.pop(0)
        if isinstance(proc, Exception):
            raise proc
        return proc

    monkeypatch.setattr(ledger_module.asyncio, "create_subprocess_exec", fake_exec)
    return recorded, queue


def test_parse_capabilities():
    assert parse_capabilities("voter_status, ALLOW_LIST,,") == frozenset({
        LedgerCapability.VOTER_STATUS, LedgerCapability.ALLOW_LIST,
    })
    with pytest.raises(ValueError):
        parse_capabilities("teleport")


def test_invoke_command_carries_sender_and_waits_for_commit(fabric):
    cmd = fabric._invoke_command(LedgerCall(function="Vote", sender=ADMIN, args=[3, 1]))
    assert cmd[:4] == ["peer", "chaincode", "invoke", "-o"]
    assert "--waitForEvent" in cmd
    assert cmd[cmd.index("--cafile") + 1] == "/tls/orderer.pem"
    assert cmd[cmd.index("--tlsRootCertFiles") + 1] == "/tls/peer.pem"
    assert json.loads(cmd[-1]) == {"Args": ["Vote", ADMIN, "3", "1"]}


def test_submit_transaction_parses_txid_and_payload(fabric, commands):
    recorded, queue = commands
    queue.append(FakeProcess(stderr=INVOKE_OK.encode()))
    receipt = asyncio.run(fabric.finalize_election(ADMIN, 3))
    assert receipt.success
    assert receipt.transaction_id == "3f9a0c7e11"
    assert receipt.payload == "7"
    assert recorded[0][2] == "invoke"


def test_query_decodes_json(fabric, commands):
    _, queue = commands
    queue.append(FakeProcess(stdout=b"2"))
    assert asyncio.run(fabric.get_voter_status(3, ADMIN)) == VoterStatus.APPROVED


def test_missing_election_is_not_found(fabric, commands):
    _, queue = commands
    queue.append(FakeProcess(stdout=b""))
    with pytest.raises(NotFoundError):
        asyncio.run(fabric.get_election_details(9))


def test_election_details_load_candidates(fabric, commands):
    _, queue = commands
    election = {
        "id": 3, "title": "Board", "description_ref": "", "registration_start": 1772366400,
        "voting_start": 1772370000, "voting_end": 1772373600, "status": 2, "election_type": 1,
        "admin": ADMIN.upper().replace("0X", "0x"), "total_votes": 4, "candidate_count": 2,
    }
    queue.append(FakeProcess(stdout=json.dumps(election).encode()))
    queue.append(FakeProcess(stdout=json.dumps({"id": 1, "name": "Ada", "vote_count": 3}).encode()))
    queue.append(FakeProcess(stdout=json.dumps({"id": 2, "name": "Grace", "vote_count": 1}).encode()))

    details = asyncio.run(fabric.get_election_details(3))
    assert details.status == ElectionStatus.ACTIVE
    assert details.admin == ADMIN
    assert [c.vote_count for c in details.candidates] == [3, 1]
    assert details.description_ref is None


@pytest.mark.parametrize("stderr, kind", [
    (b"Error: error getting endorser client for invoke: endorser client failed to connect to localhost:7051", AdapterErrorKind.UNREACHABLE),
    (b"Error: failed to send transaction: context deadline exceeded", AdapterErrorKind.TIMEOUT),
    (b"Error: endorsement failure during invoke. response: status:500 message:\"Already voted\"", AdapterErrorKind.REJECTED),
])
def test_cli_failures_are_classified(fabric, commands, stderr, kind):
    _, queue = commands
    queue.append(FakeProcess(stderr=stderr, returncode=1))
    with pytest.raises(AdapterError) as excinfo:
        asyncio.run(fabric.vote(ADMIN, 3, 1))
    assert excinfo.value.kind == kind


def test_hanging_cli_times_out(fabric, commands):
    _, queue = commands
    proc = FakeProcess(hang=True)
    queue.append(proc)
    with pytest.raises(AdapterError) as excinfo:
        asyncio.run(fabric.has_voted(3, ADMIN))
    assert excinfo.value.kind == AdapterErrorKind.TIMEOUT
    assert proc.killed


def test_missing_peer_binary_is_unreachable(fabric, commands):
    _, queue = commands
    queue.append(FileNotFoundError("peer"))
    with pytest.raises(AdapterError) as excinfo:
        asyncio.run(fabric.list_election_ids())
    assert excinfo.value.kind == AdapterErrorKind.UNREACHABLE


def test_unsupported_capability_is_rejected_without_a_call(commands):
    recorded, _ = commands
    fabric = FabricLedgerAdapter(capabilities=[LedgerCapability.ALLOW_LIST])
    with pytest.raises(AdapterError) as excinfo:
        asyncio.run(fabric.get_voter_status(3, ADMIN))
    assert excinfo.value.kind == AdapterErrorKind.REJECTED
    assert recorded == []


def test_put_submits_raw_chaincode_call(fabric, commands):
    recorded, queue = commands
    queue.append(FakeProcess(stderr=b"txid [abc123] committed with status (VALID)"))
    assert asyncio.run(fabric.put("AddEvidence", ["{{vote}}"])) == "abc123"
    assert json.loads(recorded[0][-1]) == {"Args": ["AddEvidence", "{{vote}}"]}


def test_admin_registry_calls(fabric, commands):
    recorded, queue = commands
    queue.append(FakeProcess(stdout=json.dumps(ADMIN.upper().replace("0X", "0x")).encode()))
    queue.append(FakeProcess(stdout=b"true"))
    queue.append(FakeProcess(stderr=b"txid [beef01] committed with status (VALID)"))

    assert asyncio.run(fabric.get_owner()) == ADMIN
    assert asyncio.run(fabric.is_admin("0x" + "b" * 40)) is True
    receipt = asyncio.run(fabric.add_admin(ADMIN, "0x" + "b" * 40))
    assert receipt.transaction_id == "beef01"
    assert json.loads(recorded[1][-1]) == {"Args": ["IsAdmin", "0x" + "b" * 40]}
    assert json.loads(recorded[2][-1]) == {"Args": ["AddAdmin", ADMIN, "0x" + "b" * 40]}
