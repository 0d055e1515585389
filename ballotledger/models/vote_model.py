from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from .election_model import Election


class LedgerReceipt(BaseModel):
    transaction_id: Optional[str] = None
    success: bool = True
    # Value returned by the transaction, e.g. a new election id
    payload: Optional[str] = None


class VoteRecord(BaseModel):
    election_id: int
    voter_address: str
    candidate_id: int
    cast_at: datetime


class VoteReceipt(BaseModel):
    election_id: int
    voter_address: str
    candidate_id: int
    cast_at: datetime
    receipt: LedgerReceipt
    # True when an earlier ambiguous attempt turned out to have been committed
    recovered: bool = False
    # Election as seen after the vote (resynchronised from the ledger when possible)
    election: Optional[Election] = None


class FinalizeResult(BaseModel):
    election_id: int
    winning_candidate_id: int
    receipt: Optional[LedgerReceipt] = None
    already_finalized: bool = False
