from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from mint_migrator.crypto import hash_to_curve


class State(str, Enum):
    """Spend state of a proof."""
    UNSPENT = "UNSPENT"
    PENDING = "PENDING"
    SPENT = "SPENT"
    RESERVED = "RESERVED"
    PENDING_SPENT = "PENDING_SPENT"


class AuthRequired(str, Enum):
    CLEAR = "clear"
    BLIND = "blind"


class StoredModel(BaseModel):
    """Base for every entity persisted as JSON.

    Field names follow the wire format used by the mint (`id`, `C`, `C_`),
    so models are built and dumped by alias. Keys a model does not declare
    are kept and written back out, so records copy without loss.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str):
        return cls.model_validate_json(raw)


class ContactInfo(StoredModel):
    method: str
    info: str


class MintInfo(StoredModel):
    name: Optional[str] = None
    pubkey: Optional[str] = None
    version: Optional[str] = None
    description: Optional[str] = None
    description_long: Optional[str] = None
    contact: Optional[List[ContactInfo]] = None
    nuts: Dict[str, Any] = {}
    icon_url: Optional[str] = None
    urls: Optional[List[str]] = None
    motd: Optional[str] = None
    time: Optional[int] = None
    tos_url: Optional[str] = None


class QuoteTTL(StoredModel):
    mint_ttl: int
    melt_ttl: int


class KeysetInfo(StoredModel):
    id: str
    unit: str = "sat"
    active: bool = True
    valid_from: int = 0
    valid_to: Optional[int] = None
    derivation_path: str
    derivation_path_index: Optional[int] = None
    max_order: int = 64
    input_fee_ppk: int = 0


class DleqProof(StoredModel):
    e: str
    s: str
    r: Optional[str] = None


class Proof(StoredModel):
    amount: int
    keyset_id: str = Field(alias="id")
    secret: str
    c: str = Field(alias="C")
    witness: Optional[str] = None
    dleq: Optional[DleqProof] = None

    def y(self) -> bytes:
        """Compressed curve point identifying this proof."""
        return hash_to_curve(self.secret.encode("utf-8"))


class AuthProof(StoredModel):
    keyset_id: str = Field(alias="id")
    secret: str
    c: str = Field(alias="C")
    dleq: Optional[DleqProof] = None

    def y(self) -> bytes:
        return hash_to_curve(self.secret.encode("utf-8"))


class BlindedMessage(StoredModel):
    amount: int
    keyset_id: str = Field(alias="id")
    blinded_secret: str = Field(alias="B_")


class BlindSignature(StoredModel):
    amount: int
    keyset_id: str = Field(alias="id")
    c: str = Field(alias="C_")
    dleq: Optional[DleqProof] = None


class MintQuote(StoredModel):
    id: str
    amount: Optional[int] = None
    unit: str
    request: str
    state: str = "UNPAID"
    expiry: int
    request_lookup_id: str
    pubkey: Optional[str] = None
    created_time: int = 0
    paid_time: Optional[int] = None
    issued_time: Optional[int] = None


class MeltQuote(StoredModel):
    id: str
    unit: str
    amount: int
    request: str
    fee_reserve: int
    state: str = "UNPAID"
    expiry: int
    payment_preimage: Optional[str] = None
    request_lookup_id: str
    msat_to_pay: Optional[int] = None
    created_time: int = 0
    paid_time: Optional[int] = None


class MeltRequest(StoredModel):
    quote: str
    inputs: List[Proof]
    outputs: Optional[List[BlindedMessage]] = None


class PaymentProcessorKey(StoredModel):
    unit: str
    method: str


class ProtectedEndpoint(StoredModel):
    model_config = ConfigDict(frozen=True)

    method: str
    path: str

    def __str__(self) -> str:
        return f"{self.method} {self.path}"

    @classmethod
    def parse(cls, raw: str) -> "ProtectedEndpoint":
        method, _, path = raw.partition(" ")
        return cls(method=method, path=path)
