# storage_mongo.py
import logging
from typing import Any, Dict, List, Optional, Tuple

from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    ExecutionTimeout,
    NetworkTimeout,
    PyMongoError,
    WTimeoutError,
)

from .content import ContentAdapter, content_address
from .errors import AdapterError, rejected, timeout, unreachable

logger = logging.getLogger(__name__)


class MongoContentAdapter(ContentAdapter):
    """
    Content-addressed store on a MongoDB collection (motor).

    Each object is one document: {_id: address, election_id, kind, payload}.
    """

    def __init__(self, collection):
        self.collection = collection

    def _translate(self, e: PyMongoError, action: str) -> AdapterError:
        if isinstance(e, (NetworkTimeout, ExecutionTimeout, WTimeoutError)):
            return timeout(f"MongoDB timed out during {action}: {e}", self.backend)
        if isinstance(e, ConnectionFailure):
            return unreachable(f"MongoDB unreachable during {action}: {e}", self.backend)
        return rejected(f"MongoDB rejected {action}: {e}", self.backend)

    async def ensure_indexes(self):
        try:
            await self.collection.create_index([("election_id", 1), ("kind", 1)])
        except PyMongoError as e:
            raise self._translate(e, "create_index")

    async def store(self, doc: Dict[str, Any]) -> str:
        """
        Store a JSON object and return its content address.

        Args:
            doc: JSON-serialisable object; registration objects carry
                 "kind" and "election_id" so they can be listed per election

        Returns:
            The SHA-256 content address
        """
        address = content_address(doc)
        record = {
            "_id": address,
            "election_id": doc.get("election_id"),
            "kind": doc.get("kind"),
            "payload": doc,
        }
        try:
            await self.collection.insert_one(record)
            logger.info(f"Stored content object {address}")
        except DuplicateKeyError:
            # Same content, same address
            logger.info(f"Content object {address} already stored")
        except PyMongoError as e:
            raise self._translate(e, "store")
        return address

    async def fetch(self, address: str) -> Optional[Dict[str, Any]]:
        try:
            record = await self.collection.find_one({"_id": address})
        except PyMongoError as e:
            raise self._translate(e, "fetch")
        if record is None:
            return None
        return record["payload"]

    async def list_by_election(self, election_id: int) -> List[Tuple[str, Dict[str, Any]]]:
        try:
            cursor = self.collection.find({"election_id": election_id, "kind": "registration"})
            records = []
            async for record in cursor:
                records.append((record["_id"], record["payload"]))
        except PyMongoError as e:
            raise self._translate(e, "list_by_election")
        logger.info(f"Retrieved {len(records)} registration objects for election {election_id}")
        return records
