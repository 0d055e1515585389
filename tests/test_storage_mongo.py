# tests/test_storage_mongo.py
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import (
    DuplicateKeyError,
    NetworkTimeout,
    OperationFailure,
    ServerSelectionTimeoutError,
)

from ballotledger.content import content_address
from ballotledger.errors import AdapterError, AdapterErrorKind
from ballotledger.storage_mongo import MongoContentAdapter

DOC = {"kind": "registration", "election_id": 4, "voter_address": "0x" + "b" * 40, "status": "pending"}


class AsyncCursor:
    def __init__(self, records):
        self.records = list(records)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.records:
            raise StopAsyncIteration
        return self.records.pop(0)


@pytest.fixture
def collection():
    coll = MagicMock()
    coll.insert_one = AsyncMock()
    coll.find_one = AsyncMock()
    coll.create_index = AsyncMock()
    return coll


@pytest.fixture
def adapter(collection):
    return MongoContentAdapter(collection)


def test_store_inserts_document_under_its_address(adapter, collection):
    address = asyncio.run(adapter.store(DOC))
    assert address == content_address(DOC)
    collection.insert_one.assert_awaited_once_with({
        "_id": address, "election_id": 4, "kind": "registration", "payload": DOC,
    })


def test_storing_same_document_twice_is_not_an_error(adapter, collection):
    collection.insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")
    assert asyncio.run(adapter.store(DOC)) == content_address(DOC)


@pytest.mark.parametrize("error, kind", [
    (NetworkTimeout("timed out"), AdapterErrorKind.TIMEOUT),
    (ServerSelectionTimeoutError("no servers"), AdapterErrorKind.UNREACHABLE),
    (OperationFailure("not authorized"), AdapterErrorKind.REJECTED),
])
def test_driver_errors_are_translated(adapter, collection, error, kind):
    collection.insert_one.side_effect = error
    with pytest.raises(AdapterError) as excinfo:
        asyncio.run(adapter.store(DOC))
    assert excinfo.value.kind == kind
    assert excinfo.value.backend == "content"


def test_fetch_returns_payload_or_none(adapter, collection):
    collection.find_one.return_value = {"_id": "abc", "payload": DOC}
    assert asyncio.run(adapter.fetch("abc")) == DOC
    collection.find_one.assert_awaited_with({"_id": "abc"})

    collection.find_one.return_value = None
    assert asyncio.run(adapter.fetch("missing")) is None


def test_list_by_election_reads_registrations(adapter, collection):
    collection.find.return_value = AsyncCursor([
        {"_id": "a1", "payload": DOC},
        {"_id": "a2", "payload": {**DOC, "status": "approved"}},
    ])
    records = asyncio.run(adapter.list_by_election(4))
    assert [address for address, _ in records] == ["a1", "a2"]
    collection.find.assert_called_once_with({"election_id": 4, "kind": "registration"})


def test_ensure_indexes(adapter, collection):
    asyncio.run(adapter.ensure_indexes())
    collection.create_index.assert_awaited_once_with([("election_id", 1), ("kind", 1)])
