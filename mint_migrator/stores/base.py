"""
Abstract store interfaces.

The migrator and verifier only talk to these classes. `MintReader` is the
read surface shared by the legacy store and the SQL store, so the verifier
can compare any two implementations. Sources add raw scans for the tables
that have no typed bulk accessor; targets add the write operations.
"""
from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from mint_migrator.models import (
    AuthProof,
    AuthRequired,
    BlindSignature,
    KeysetInfo,
    MeltQuote,
    MeltRequest,
    MintInfo,
    MintQuote,
    PaymentProcessorKey,
    Proof,
    ProtectedEndpoint,
    QuoteTTL,
    State,
)

RawRecord = Tuple[bytes, str]


class MintReader(ABC):
    @abstractmethod
    def get_mint_info(self) -> MintInfo: ...

    @abstractmethod
    def get_quote_ttl(self) -> QuoteTTL: ...

    @abstractmethod
    def get_keyset_infos(self) -> List[KeysetInfo]: ...

    @abstractmethod
    def get_mint_quotes(self) -> List[MintQuote]: ...

    @abstractmethod
    def get_melt_quotes(self) -> List[MeltQuote]: ...

    @abstractmethod
    def get_melt_request(self, quote_id: str) -> Optional[Tuple[MeltRequest, PaymentProcessorKey]]: ...

    @abstractmethod
    def get_proofs_by_keyset_id(self, keyset_id: str) -> Tuple[List[Proof], List[Optional[State]]]:
        """Return the keyset's proofs and a parallel list of their states."""

    @abstractmethod
    def get_proofs_states(self, ys: Sequence[bytes]) -> List[Optional[State]]: ...

    @abstractmethod
    def get_blind_signatures_for_keyset(self, keyset_id: str) -> List[BlindSignature]: ...

    def close(self) -> None:
        pass


class MintSource(MintReader):
    @abstractmethod
    def scan_blind_signatures(self) -> Iterator[RawRecord]:
        """Yield every (blinded message key, signature JSON) pair as stored."""


class MintTarget(MintReader):
    @abstractmethod
    def set_mint_info(self, mint_info: MintInfo) -> None: ...

    @abstractmethod
    def set_quote_ttl(self, quote_ttl: QuoteTTL) -> None: ...

    @abstractmethod
    def add_keyset_info(self, keyset: KeysetInfo) -> None: ...

    @abstractmethod
    def add_mint_quote(self, quote: MintQuote) -> None: ...

    @abstractmethod
    def add_melt_quote(self, quote: MeltQuote) -> None: ...

    @abstractmethod
    def add_melt_request(self, melt_request: MeltRequest, payment_key: PaymentProcessorKey) -> None: ...

    @abstractmethod
    def add_proofs(self, proofs: Sequence[Proof], quote_id: Optional[str] = None) -> None: ...

    @abstractmethod
    def update_proofs_states(self, ys: Sequence[bytes], state: State) -> None: ...

    @abstractmethod
    def add_blind_signatures(self, messages: Sequence[bytes], signatures: Sequence[BlindSignature],
                             quote_id: Optional[str] = None) -> None: ...


class AuthReader(ABC):
    @abstractmethod
    def get_keyset_infos(self) -> List[KeysetInfo]: ...

    @abstractmethod
    def get_proofs_states(self, ys: Sequence[bytes]) -> List[Optional[State]]: ...

    @abstractmethod
    def get_auth_for_endpoints(self) -> Dict[ProtectedEndpoint, Optional[AuthRequired]]: ...

    def close(self) -> None:
        pass


class AuthSource(AuthReader):
    @abstractmethod
    def scan_blind_signatures(self) -> Iterator[RawRecord]: ...

    @abstractmethod
    def scan_proofs(self) -> Iterator[RawRecord]: ...


class AuthTarget(AuthReader):
    @abstractmethod
    def add_keyset_info(self, keyset: KeysetInfo) -> None: ...

    @abstractmethod
    def add_proof(self, proof: AuthProof) -> None: ...

    @abstractmethod
    def update_proof_state(self, y: bytes, state: State) -> None: ...

    @abstractmethod
    def add_blind_signatures(self, messages: Sequence[bytes], signatures: Sequence[BlindSignature]) -> None: ...

    @abstractmethod
    def add_protected_endpoints(self, endpoints: Dict[ProtectedEndpoint, AuthRequired]) -> None: ...
