"""
Legacy key-value store.

Every table is a flat map from byte keys to UTF-8 JSON values, kept in a
single embedded database file.
"""
import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple, Type, TypeVar, Union

from mint_migrator.errors import SourceDecodeError, StoreReadError
from mint_migrator.models import (
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
    StoredModel,
)
from mint_migrator.stores.base import AuthSource, MintSource, RawRecord
from mint_migrator.transformers import decode_blind_signature, decode_record

logger = logging.getLogger(__name__)

CONFIG_TABLE = "config"
KEYSETS_TABLE = "keysets"
MINT_QUOTES_TABLE = "mint_quotes"
MELT_QUOTES_TABLE = "melt_quotes"
MELT_REQUESTS_TABLE = "melt_requests"
PROOFS_TABLE = "proofs"
PROOF_STATES_TABLE = "proof_states"
BLINDED_SIGNATURES_TABLE = "blinded_signatures"
ENDPOINTS_TABLE = "endpoints"

MINT_INFO_KEY = b"mint_info"
QUOTE_TTL_KEY = b"quote_ttl"

M = TypeVar("M", bound=StoredModel)
Key = Union[bytes, str]


def _key(key: Key) -> bytes:
    return key.encode("utf-8") if isinstance(key, str) else bytes(key)


class KeyValueDatabase:
    """Raw table access to a key-value database file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        with self._reading():
            self.conn = sqlite3.connect(str(self.path))

    @contextmanager
    def _reading(self):
        """Report engine failures (corrupt or locked file) as StoreReadError."""
        try:
            yield
        except sqlite3.Error as e:
            raise StoreReadError(f"Cannot read key-value database {self.path}: {e}") from e

    def table_names(self) -> Set[str]:
        with self._reading():
            cursor = self.conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
            return {row[0] for row in cursor.fetchall()}

    def iter_table(self, table: str) -> Iterator[RawRecord]:
        """Yield (key, value) pairs in key order. A missing table is empty."""
        if table not in self.table_names():
            return
        with self._reading():
            cursor = self.conn.cursor()
            cursor.execute(f'SELECT key, value FROM "{table}" ORDER BY key')
            rows = cursor.fetchall()
        for key, value in rows:
            yield bytes(key), value

    def get(self, table: str, key: Key) -> Optional[str]:
        if table not in self.table_names():
            return None
        with self._reading():
            cursor = self.conn.cursor()
            cursor.execute(f'SELECT value FROM "{table}" WHERE key = ?', (_key(key),))
            row = cursor.fetchone()
        return row[0] if row else None

    def put(self, table: str, key: Key, value: str) -> None:
        cursor = self.conn.cursor()
        cursor.execute(f'CREATE TABLE IF NOT EXISTS "{table}" (key BLOB PRIMARY KEY, value TEXT NOT NULL)')
        cursor.execute(f'INSERT OR REPLACE INTO "{table}" (key, value) VALUES (?, ?)', (_key(key), value))
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()


def _load(db: KeyValueDatabase, table: str, key: Key, model: Type[M]) -> Optional[M]:
    raw = db.get(table, key)
    if raw is None:
        return None
    return decode_record(table, _key(key), raw, model)


def _load_all(db: KeyValueDatabase, table: str, model: Type[M]) -> List[M]:
    return [decode_record(table, key, raw, model) for key, raw in db.iter_table(table)]


def _load_state(db: KeyValueDatabase, y: bytes) -> Optional[State]:
    raw = db.get(PROOF_STATES_TABLE, y)
    if raw is None:
        return None
    try:
        return State(json.loads(raw))
    except ValueError as e:
        raise SourceDecodeError(PROOF_STATES_TABLE, y, str(e)) from e


class KeyValueMintStore(MintSource):
    def __init__(self, path: Union[str, Path]):
        self.db = KeyValueDatabase(path)

    def get_mint_info(self) -> MintInfo:
        mint_info = _load(self.db, CONFIG_TABLE, MINT_INFO_KEY, MintInfo)
        if mint_info is None:
            raise SourceDecodeError(CONFIG_TABLE, MINT_INFO_KEY, "record missing")
        return mint_info

    def get_quote_ttl(self) -> QuoteTTL:
        quote_ttl = _load(self.db, CONFIG_TABLE, QUOTE_TTL_KEY, QuoteTTL)
        if quote_ttl is None:
            raise SourceDecodeError(CONFIG_TABLE, QUOTE_TTL_KEY, "record missing")
        return quote_ttl

    def get_keyset_infos(self) -> List[KeysetInfo]:
        return _load_all(self.db, KEYSETS_TABLE, KeysetInfo)

    def get_mint_quotes(self) -> List[MintQuote]:
        return _load_all(self.db, MINT_QUOTES_TABLE, MintQuote)

    def get_melt_quotes(self) -> List[MeltQuote]:
        return _load_all(self.db, MELT_QUOTES_TABLE, MeltQuote)

    def get_melt_request(self, quote_id: str) -> Optional[Tuple[MeltRequest, PaymentProcessorKey]]:
        raw = self.db.get(MELT_REQUESTS_TABLE, quote_id)
        if raw is None:
            return None
        key = _key(quote_id)
        try:
            payload = json.loads(raw)
            return (MeltRequest.model_validate(payload["request"]),
                    PaymentProcessorKey.model_validate(payload["payment_key"]))
        except (ValueError, KeyError, TypeError) as e:
            raise SourceDecodeError(MELT_REQUESTS_TABLE, key, str(e)) from e

    def get_proofs_by_keyset_id(self, keyset_id: str) -> Tuple[List[Proof], List[Optional[State]]]:
        proofs = []
        states = []
        for y, raw in self.db.iter_table(PROOFS_TABLE):
            proof = decode_record(PROOFS_TABLE, y, raw, Proof)
            if proof.keyset_id != keyset_id:
                continue
            proofs.append(proof)
            states.append(_load_state(self.db, y))
        return proofs, states

    def get_proofs_states(self, ys: Sequence[bytes]) -> List[Optional[State]]:
        return [_load_state(self.db, y) for y in ys]

    def get_blind_signatures_for_keyset(self, keyset_id: str) -> List[BlindSignature]:
        signatures = []
        for key, raw in self.db.iter_table(BLINDED_SIGNATURES_TABLE):
            _, signature = decode_blind_signature(key, raw)
            if signature.keyset_id == keyset_id:
                signatures.append(signature)
        return signatures

    def scan_blind_signatures(self) -> Iterator[RawRecord]:
        return self.db.iter_table(BLINDED_SIGNATURES_TABLE)

    def close(self) -> None:
        self.db.close()


class KeyValueAuthStore(AuthSource):
    def __init__(self, path: Union[str, Path]):
        self.db = KeyValueDatabase(path)

    def get_keyset_infos(self) -> List[KeysetInfo]:
        return _load_all(self.db, KEYSETS_TABLE, KeysetInfo)

    def get_proofs_states(self, ys: Sequence[bytes]) -> List[Optional[State]]:
        return [_load_state(self.db, y) for y in ys]

    def get_auth_for_endpoints(self) -> Dict[ProtectedEndpoint, Optional[AuthRequired]]:
        endpoints = {}
        for key, raw in self.db.iter_table(ENDPOINTS_TABLE):
            try:
                value = json.loads(raw)
                endpoint = ProtectedEndpoint.parse(key.decode("utf-8"))
                endpoints[endpoint] = AuthRequired(value) if value is not None else None
            except ValueError as e:
                raise SourceDecodeError(ENDPOINTS_TABLE, key, str(e)) from e
        return endpoints

    def scan_blind_signatures(self) -> Iterator[RawRecord]:
        return self.db.iter_table(BLINDED_SIGNATURES_TABLE)

    def scan_proofs(self) -> Iterator[RawRecord]:
        return self.db.iter_table(PROOFS_TABLE)

    def close(self) -> None:
        self.db.close()
