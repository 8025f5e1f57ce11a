"""
SQL store built on SQLAlchemy Core tables.

Inserts are idempotent (`ON CONFLICT DO NOTHING`), singletons are upserted,
and proof states are the only column updated after a row exists.
"""
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
    update,
)
from sqlalchemy.dialects.sqlite import insert

from mint_migrator.errors import StoreReadError
from mint_migrator.models import (
    AuthProof,
    AuthRequired,
    BlindedMessage,
    BlindSignature,
    DleqProof,
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
from mint_migrator.stores.base import AuthTarget, MintTarget

logger = logging.getLogger(__name__)

# Keeps IN (...) clauses under SQLite's bound parameter limit
BATCH_SIZE = 500


def _keyset_table(metadata: MetaData) -> Table:
    return Table(
        "keyset", metadata,
        Column("id", String, primary_key=True),
        Column("unit", String, nullable=False),
        Column("active", Boolean, nullable=False),
        Column("valid_from", Integer, nullable=False),
        Column("valid_to", Integer),
        Column("derivation_path", String, nullable=False),
        Column("derivation_path_index", Integer),
        Column("max_order", Integer, nullable=False),
        Column("input_fee_ppk", Integer, nullable=False, default=0),
        Column("extra", Text),
    )


mint_metadata = MetaData()

config_table = Table(
    "config", mint_metadata,
    Column("id", String, primary_key=True),
    Column("value", Text, nullable=False),
)

keyset_table = _keyset_table(mint_metadata)

mint_quote_table = Table(
    "mint_quote", mint_metadata,
    Column("id", String, primary_key=True),
    Column("amount", Integer),
    Column("unit", String, nullable=False),
    Column("request", Text, nullable=False),
    Column("state", String, nullable=False),
    Column("expiry", Integer, nullable=False),
    Column("request_lookup_id", String, nullable=False),
    Column("pubkey", String),
    Column("created_time", Integer, nullable=False),
    Column("paid_time", Integer),
    Column("issued_time", Integer),
    Column("extra", Text),
)

melt_quote_table = Table(
    "melt_quote", mint_metadata,
    Column("id", String, primary_key=True),
    Column("unit", String, nullable=False),
    Column("amount", Integer, nullable=False),
    Column("request", Text, nullable=False),
    Column("fee_reserve", Integer, nullable=False),
    Column("state", String, nullable=False),
    Column("expiry", Integer, nullable=False),
    Column("payment_preimage", String),
    Column("request_lookup_id", String, nullable=False),
    Column("msat_to_pay", Integer),
    Column("created_time", Integer, nullable=False),
    Column("paid_time", Integer),
    Column("extra", Text),
)

melt_request_table = Table(
    "melt_request", mint_metadata,
    Column("id", String, primary_key=True),
    Column("inputs", Text, nullable=False),
    Column("outputs", Text),
    Column("method", String, nullable=False),
    Column("unit", String, nullable=False),
)

proof_table = Table(
    "proof", mint_metadata,
    Column("y", LargeBinary, primary_key=True),
    Column("amount", Integer, nullable=False),
    Column("keyset_id", String, ForeignKey("keyset.id"), nullable=False),
    Column("secret", Text, nullable=False),
    Column("c", Text, nullable=False),
    Column("witness", Text),
    Column("dleq", Text),
    Column("state", String, nullable=False, default=State.UNSPENT.value),
    Column("quote_id", String),
    Column("extra", Text),
)

blind_signature_table = Table(
    "blind_signature", mint_metadata,
    Column("blinded_message", LargeBinary, primary_key=True),
    Column("amount", Integer, nullable=False),
    Column("keyset_id", String, ForeignKey("keyset.id"), nullable=False),
    Column("c", Text, nullable=False),
    Column("dleq", Text),
    Column("quote_id", String),
    Column("extra", Text),
)

auth_metadata = MetaData()

auth_keyset_table = _keyset_table(auth_metadata)

auth_proof_table = Table(
    "proof", auth_metadata,
    Column("y", LargeBinary, primary_key=True),
    Column("keyset_id", String, ForeignKey("keyset.id"), nullable=False),
    Column("secret", Text, nullable=False),
    Column("c", Text, nullable=False),
    Column("dleq", Text),
    Column("state", String, nullable=False, default=State.UNSPENT.value),
    Column("extra", Text),
)

auth_blind_signature_table = Table(
    "blind_signature", auth_metadata,
    Column("blinded_message", LargeBinary, primary_key=True),
    Column("amount", Integer, nullable=False),
    Column("keyset_id", String, ForeignKey("keyset.id"), nullable=False),
    Column("c", Text, nullable=False),
    Column("dleq", Text),
    Column("extra", Text),
)

protected_endpoints_table = Table(
    "protected_endpoints", auth_metadata,
    Column("endpoint", String, primary_key=True),
    Column("auth", String, nullable=False),
)

MINT_INFO_ID = "mint_info"
QUOTE_TTL_ID = "quote_ttl"


def _batches(items: Sequence, size: int = BATCH_SIZE) -> Iterable[Sequence]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _dleq_json(dleq: Optional[DleqProof]) -> Optional[str]:
    return dleq.to_json() if dleq is not None else None


def _dleq_from(raw: Optional[str]) -> Optional[DleqProof]:
    return DleqProof.from_json(raw) if raw is not None else None


def _extra_from(raw: Optional[str]) -> dict:
    return json.loads(raw) if raw is not None else {}


def _extra_json(model: StoredModel) -> Optional[str]:
    return json.dumps(model.model_extra) if model.model_extra else None


def _model_row(model: StoredModel) -> dict:
    """Column values for a column-mapped model; undeclared keys go to `extra`."""
    extra = model.model_extra or {}
    row = {name: value for name, value in model.model_dump().items() if name not in extra}
    row["extra"] = _extra_json(model)
    return row


def _row_values(row) -> dict:
    values = dict(row._mapping)
    values.update(_extra_from(values.pop("extra", None)))
    return values


def _open_engine(path: Union[str, Path], metadata: MetaData):
    engine = create_engine(f"sqlite:///{path}")

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    metadata.create_all(engine)
    return engine


def _read_states(engine, table: Table, ys: Sequence[bytes]) -> List[Optional[State]]:
    found: Dict[bytes, State] = {}
    with engine.connect() as conn:
        for batch in _batches(list(ys)):
            rows = conn.execute(select(table.c.y, table.c.state).where(table.c.y.in_(batch)))
            found.update({bytes(row.y): State(row.state) for row in rows})
    return [found.get(bytes(y)) for y in ys]


def _read_keysets(engine, table: Table) -> List[KeysetInfo]:
    with engine.connect() as conn:
        rows = conn.execute(select(table).order_by(table.c.id))
        return [KeysetInfo.model_validate(_row_values(row)) for row in rows]


def _write_keyset(engine, table: Table, keyset: KeysetInfo) -> None:
    with engine.begin() as conn:
        conn.execute(insert(table).values(**_model_row(keyset)).on_conflict_do_nothing())


def _write_blind_signatures(engine, table: Table, messages: Sequence[bytes],
                            signatures: Sequence[BlindSignature], quote_id: Optional[str] = None) -> None:
    if len(messages) != len(signatures):
        raise ValueError("Blinded messages and signatures must have the same length")
    if not messages:
        return
    rows = []
    for message, signature in zip(messages, signatures):
        row = {
            "blinded_message": bytes(message),
            "amount": signature.amount,
            "keyset_id": signature.keyset_id,
            "c": signature.c,
            "dleq": _dleq_json(signature.dleq),
            "extra": _extra_json(signature),
        }
        if "quote_id" in table.c:
            row["quote_id"] = quote_id
        rows.append(row)
    with engine.begin() as conn:
        conn.execute(insert(table).on_conflict_do_nothing(), rows)


class SqlMintStore(MintTarget):
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.engine = _open_engine(self.path, mint_metadata)

    # Singletons

    def _set_config(self, key: str, value: str) -> None:
        stmt = insert(config_table).values(id=key, value=value)
        stmt = stmt.on_conflict_do_update(index_elements=[config_table.c.id], set_={"value": value})
        with self.engine.begin() as conn:
            conn.execute(stmt)

    def _get_config(self, key: str) -> Optional[str]:
        with self.engine.connect() as conn:
            return conn.execute(select(config_table.c.value).where(config_table.c.id == key)).scalar()

    def set_mint_info(self, mint_info: MintInfo) -> None:
        self._set_config(MINT_INFO_ID, mint_info.to_json())

    def get_mint_info(self) -> MintInfo:
        raw = self._get_config(MINT_INFO_ID)
        if raw is None:
            raise StoreReadError("Mint info has not been set")
        return MintInfo.from_json(raw)

    def set_quote_ttl(self, quote_ttl: QuoteTTL) -> None:
        self._set_config(QUOTE_TTL_ID, quote_ttl.to_json())

    def get_quote_ttl(self) -> QuoteTTL:
        raw = self._get_config(QUOTE_TTL_ID)
        if raw is None:
            raise StoreReadError("Quote TTL has not been set")
        return QuoteTTL.from_json(raw)

    # Keysets

    def add_keyset_info(self, keyset: KeysetInfo) -> None:
        _write_keyset(self.engine, keyset_table, keyset)

    def get_keyset_infos(self) -> List[KeysetInfo]:
        return _read_keysets(self.engine, keyset_table)

    # Quotes

    def add_mint_quote(self, quote: MintQuote) -> None:
        with self.engine.begin() as conn:
            conn.execute(insert(mint_quote_table).values(**_model_row(quote)).on_conflict_do_nothing())

    def get_mint_quotes(self) -> List[MintQuote]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(mint_quote_table).order_by(mint_quote_table.c.id))
            return [MintQuote.model_validate(_row_values(row)) for row in rows]

    def add_melt_quote(self, quote: MeltQuote) -> None:
        with self.engine.begin() as conn:
            conn.execute(insert(melt_quote_table).values(**_model_row(quote)).on_conflict_do_nothing())

    def get_melt_quotes(self) -> List[MeltQuote]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(melt_quote_table).order_by(melt_quote_table.c.id))
            return [MeltQuote.model_validate(_row_values(row)) for row in rows]

    def add_melt_request(self, melt_request: MeltRequest, payment_key: PaymentProcessorKey) -> None:
        outputs = None
        if melt_request.outputs is not None:
            outputs = json.dumps([output.model_dump(mode="json", by_alias=True) for output in melt_request.outputs])
        values = {
            "id": melt_request.quote,
            "inputs": json.dumps([proof.model_dump(mode="json", by_alias=True) for proof in melt_request.inputs]),
            "outputs": outputs,
            "method": payment_key.method,
            "unit": payment_key.unit,
        }
        with self.engine.begin() as conn:
            conn.execute(insert(melt_request_table).values(**values).on_conflict_do_nothing())

    def get_melt_request(self, quote_id: str) -> Optional[Tuple[MeltRequest, PaymentProcessorKey]]:
        with self.engine.connect() as conn:
            row = conn.execute(select(melt_request_table).where(melt_request_table.c.id == quote_id)).first()
        if row is None:
            return None
        outputs = None
        if row.outputs is not None:
            outputs = [BlindedMessage.model_validate(output) for output in json.loads(row.outputs)]
        melt_request = MeltRequest(
            quote=row.id,
            inputs=[Proof.model_validate(proof) for proof in json.loads(row.inputs)],
            outputs=outputs,
        )
        return melt_request, PaymentProcessorKey(unit=row.unit, method=row.method)

    # Proofs

    def add_proofs(self, proofs: Sequence[Proof], quote_id: Optional[str] = None) -> None:
        if not proofs:
            return
        rows = [
            {
                "y": proof.y(),
                "amount": proof.amount,
                "keyset_id": proof.keyset_id,
                "secret": proof.secret,
                "c": proof.c,
                "witness": proof.witness,
                "dleq": _dleq_json(proof.dleq),
                "state": State.UNSPENT.value,
                "quote_id": quote_id,
                "extra": _extra_json(proof),
            }
            for proof in proofs
        ]
        with self.engine.begin() as conn:
            conn.execute(insert(proof_table).on_conflict_do_nothing(), rows)

    def update_proofs_states(self, ys: Sequence[bytes], state: State) -> None:
        with self.engine.begin() as conn:
            for batch in _batches(list(ys)):
                conn.execute(update(proof_table).where(proof_table.c.y.in_(batch)).values(state=state.value))

    def get_proofs_by_keyset_id(self, keyset_id: str) -> Tuple[List[Proof], List[Optional[State]]]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(proof_table).where(proof_table.c.keyset_id == keyset_id).order_by(proof_table.c.y)
            ).fetchall()
        proofs = [
            Proof(amount=row.amount, keyset_id=row.keyset_id, secret=row.secret, c=row.c,
                  witness=row.witness, dleq=_dleq_from(row.dleq), **_extra_from(row.extra))
            for row in rows
        ]
        return proofs, [State(row.state) for row in rows]

    def get_proofs_states(self, ys: Sequence[bytes]) -> List[Optional[State]]:
        return _read_states(self.engine, proof_table, ys)

    # Blind signatures

    def add_blind_signatures(self, messages: Sequence[bytes], signatures: Sequence[BlindSignature],
                             quote_id: Optional[str] = None) -> None:
        _write_blind_signatures(self.engine, blind_signature_table, messages, signatures, quote_id)

    def get_blind_signatures_for_keyset(self, keyset_id: str) -> List[BlindSignature]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(blind_signature_table)
                .where(blind_signature_table.c.keyset_id == keyset_id)
                .order_by(blind_signature_table.c.blinded_message)
            )
            return [
                BlindSignature(amount=row.amount, keyset_id=row.keyset_id, c=row.c, dleq=_dleq_from(row.dleq),
                               **_extra_from(row.extra))
                for row in rows
            ]

    def close(self) -> None:
        self.engine.dispose()


class SqlAuthStore(AuthTarget):
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.engine = _open_engine(self.path, auth_metadata)

    def add_keyset_info(self, keyset: KeysetInfo) -> None:
        _write_keyset(self.engine, auth_keyset_table, keyset)

    def get_keyset_infos(self) -> List[KeysetInfo]:
        return _read_keysets(self.engine, auth_keyset_table)

    def add_proof(self, proof: AuthProof) -> None:
        values = {
            "y": proof.y(),
            "keyset_id": proof.keyset_id,
            "secret": proof.secret,
            "c": proof.c,
            "dleq": _dleq_json(proof.dleq),
            "state": State.UNSPENT.value,
            "extra": _extra_json(proof),
        }
        with self.engine.begin() as conn:
            conn.execute(insert(auth_proof_table).values(**values).on_conflict_do_nothing())

    def update_proof_state(self, y: bytes, state: State) -> None:
        with self.engine.begin() as conn:
            conn.execute(update(auth_proof_table).where(auth_proof_table.c.y == y).values(state=state.value))

    def get_proofs_states(self, ys: Sequence[bytes]) -> List[Optional[State]]:
        return _read_states(self.engine, auth_proof_table, ys)

    def add_blind_signatures(self, messages: Sequence[bytes], signatures: Sequence[BlindSignature]) -> None:
        _write_blind_signatures(self.engine, auth_blind_signature_table, messages, signatures)

    def add_protected_endpoints(self, endpoints: Dict[ProtectedEndpoint, AuthRequired]) -> None:
        if not endpoints:
            return
        rows = [{"endpoint": str(endpoint), "auth": auth.value} for endpoint, auth in endpoints.items()]
        with self.engine.begin() as conn:
            conn.execute(insert(protected_endpoints_table).on_conflict_do_nothing(), rows)

    def get_auth_for_endpoints(self) -> Dict[ProtectedEndpoint, Optional[AuthRequired]]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(protected_endpoints_table))
            return {ProtectedEndpoint.parse(row.endpoint): AuthRequired(row.auth) for row in rows}

    def close(self) -> None:
        self.engine.dispose()
