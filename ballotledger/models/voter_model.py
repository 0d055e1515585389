from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel


class VoterStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    BLACKLISTED = "blacklisted"

    @property
    def code(self) -> int:
        return _VOTER_CODES.index(self)

    @classmethod
    def from_code(cls, code: int) -> "VoterStatus":
        """Ledger codes: 0=None, 1=Pending, 2=Approved, 3=Rejected, 4=Blacklisted."""
        if not isinstance(code, int) or isinstance(code, bool) or not 0 <= code < len(_VOTER_CODES):
            raise ValueError(f"unknown voter status code: {code!r}")
        return _VOTER_CODES[code]

    @classmethod
    def parse(cls, value: str) -> "VoterStatus":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"unknown voter status: {value!r}")


_VOTER_CODES = [
    VoterStatus.NONE,
    VoterStatus.PENDING,
    VoterStatus.APPROVED,
    VoterStatus.REJECTED,
    VoterStatus.BLACKLISTED,
]


class VoterRegistration(BaseModel):
    election_id: int
    voter_address: str
    status: VoterStatus = VoterStatus.PENDING
    # Fernet token; never stored in clear
    verification_data: Optional[str] = None
    registered_at: datetime
    updated_at: datetime
    approver: Optional[str] = None
    address: Optional[str] = None
    supersedes: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump(mode="json", exclude={"address"})
        doc["kind"] = "registration"
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any], address: Optional[str] = None) -> "VoterRegistration":
        data = {k: v for k, v in doc.items() if k not in ("kind", "_id")}
        data["status"] = VoterStatus.parse(data.get("status", "none"))
        if address is not None:
            data["address"] = address
        return cls(**data)


class EligibilitySource(str, Enum):
    LEDGER = "ledger"
    CONTENT = "content"
    CACHE = "cache"
    NONE = "none"


class EligibilityResult(BaseModel):
    election_id: int
    voter_address: str
    status: VoterStatus
    source: EligibilitySource
    reason: str = ""
    stale: bool = False

    @property
    def approved(self) -> bool:
        return self.status == VoterStatus.APPROVED
