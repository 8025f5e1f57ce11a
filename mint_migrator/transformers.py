from typing import Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from mint_migrator.crypto import parse_public_key
from mint_migrator.errors import SourceDecodeError
from mint_migrator.models import AuthProof, AuthRequired, BlindSignature, Proof, ProtectedEndpoint, State, StoredModel

M = TypeVar("M", bound=StoredModel)


def decode_record(table: str, key: bytes, raw: str, model: Type[M]) -> M:
    """Parse a stored JSON value into `model`, raising SourceDecodeError on failure."""
    try:
        return model.from_json(raw)
    except ValueError as e:
        raise SourceDecodeError(table, key, str(e)) from e


def decode_blind_signature(key: bytes, raw: str) -> Tuple[bytes, BlindSignature]:
    """Decode a (blinded message, signature JSON) pair from the signatures table."""
    try:
        message = parse_public_key(key)
    except ValueError as e:
        raise SourceDecodeError("blinded_signatures", key, f"invalid public key: {e}") from e
    return message, decode_record("blinded_signatures", key, raw, BlindSignature)


def decode_auth_proof(key: bytes, raw: str) -> AuthProof:
    return decode_record("proofs", key, raw, AuthProof)


def partition_proof_states(proofs: Sequence[Proof],
                           states: Sequence[Optional[State]]) -> Tuple[List[bytes], List[bytes], int]:
    """
    Split proof identifiers into spent and pending buckets.

    Proofs with no state keep the target default. Explicit UNSPENT is the
    default too. Any other state is counted as dropped.

    Returns:
        (spent_ys, pending_ys, dropped_count)
    """
    spent_ys = []
    pending_ys = []
    dropped = 0
    for proof, state in zip(proofs, states):
        if state == State.SPENT:
            spent_ys.append(proof.y())
        elif state == State.PENDING:
            pending_ys.append(proof.y())
        elif state is not None and state != State.UNSPENT:
            dropped += 1
    return spent_ys, pending_ys, dropped


def filter_protected_endpoints(
        endpoints: Dict[ProtectedEndpoint, Optional[AuthRequired]]) -> Dict[ProtectedEndpoint, AuthRequired]:
    """Keep only endpoints that carry a concrete authorization value."""
    return {endpoint: auth for endpoint, auth in endpoints.items() if auth is not None}
