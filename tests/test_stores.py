import json

import pytest

from mint_migrator.errors import SourceDecodeError, StoreReadError
from mint_migrator.models import (
    AuthRequired,
    BlindSignature,
    MeltRequest,
    PaymentProcessorKey,
    ProtectedEndpoint,
    State,
)
from mint_migrator.stores import KeyValueAuthStore, KeyValueMintStore, SqlAuthStore, SqlMintStore
from mint_migrator.stores.keyvalue import BLINDED_SIGNATURES_TABLE, KEYSETS_TABLE
from tests.conftest import KEYSET_1, KEYSET_2, make_keyset, make_melt_quote, make_proof, make_pubkey


@pytest.fixture
def sql_store(tmp_path):
    store = SqlMintStore(tmp_path / "target.sqlite")
    yield store
    store.close()


def test_keyvalue_store_reads_proofs_with_parallel_states(populated_legacy, config):
    store = KeyValueMintStore(config.source_path)
    try:
        proofs, states = store.get_proofs_by_keyset_id(KEYSET_1)
        assert len(proofs) == 4
        assert len(states) == 4
        assert states.count(State.SPENT) == 1
        assert states.count(State.UNSPENT) == 3
        assert store.get_proofs_by_keyset_id(KEYSET_2) == ([], [])
    finally:
        store.close()


def test_keyvalue_store_melt_request_pairing(populated_legacy, config):
    store = KeyValueMintStore(config.source_path)
    try:
        melt_request, payment_key = store.get_melt_request("melt-1")
        assert melt_request.quote == "melt-1"
        assert payment_key == PaymentProcessorKey(unit="sat", method="bolt11")
        assert store.get_melt_request("unknown") is None
    finally:
        store.close()


def test_keyvalue_store_missing_tables_are_empty(legacy, config):
    store = KeyValueMintStore(config.source_path)
    try:
        assert store.get_keyset_infos() == []
        assert list(store.scan_blind_signatures()) == []
    finally:
        store.close()


def test_keyvalue_store_raises_on_corrupt_keyset(legacy, config):
    legacy.db.put(KEYSETS_TABLE, KEYSET_1, '{"id": 12')
    store = KeyValueMintStore(config.source_path)
    try:
        with pytest.raises(SourceDecodeError):
            store.get_keyset_infos()
    finally:
        store.close()


def test_keyvalue_scan_returns_raw_records(legacy, config):
    legacy.db.put(BLINDED_SIGNATURES_TABLE, make_pubkey(5), "raw value")
    store = KeyValueMintStore(config.source_path)
    try:
        assert list(store.scan_blind_signatures()) == [(make_pubkey(5), "raw value")]
    finally:
        store.close()


def test_keyvalue_auth_store_endpoints(populated_auth, config):
    store = KeyValueAuthStore(config.auth_source_path)
    try:
        endpoints = store.get_auth_for_endpoints()
        assert endpoints[ProtectedEndpoint(method="POST", path="/v1/mint/bolt11")] == AuthRequired.BLIND
        assert endpoints[ProtectedEndpoint(method="POST", path="/v1/swap")] is None
        assert len(endpoints) == 3
    finally:
        store.close()


def test_sql_store_proofs_default_to_unspent(sql_store):
    sql_store.add_keyset_info(make_keyset(KEYSET_1))
    proofs = [make_proof(KEYSET_1, f"secret-{i}") for i in range(3)]
    sql_store.add_proofs(proofs)

    sql_store.update_proofs_states([proofs[0].y()], State.SPENT)
    sql_store.update_proofs_states([], State.PENDING)

    states = sql_store.get_proofs_states([proof.y() for proof in proofs] + [make_pubkey(9)])
    assert states == [State.SPENT, State.UNSPENT, State.UNSPENT, None]


def test_sql_store_inserts_are_idempotent(sql_store):
    keyset = make_keyset(KEYSET_1)
    sql_store.add_keyset_info(keyset)
    sql_store.add_keyset_info(keyset)
    proof = make_proof(KEYSET_1, "secret")
    sql_store.add_proofs([proof])
    sql_store.add_proofs([proof])

    assert sql_store.get_keyset_infos() == [keyset]
    assert sql_store.get_proofs_by_keyset_id(KEYSET_1) == ([proof], [State.UNSPENT])


def test_sql_store_rejects_proof_for_unknown_keyset(sql_store):
    with pytest.raises(Exception):
        sql_store.add_proofs([make_proof("00ffffffffffffff", "orphan")])


def test_sql_store_melt_request_round_trip(sql_store):
    melt_request = MeltRequest(quote="melt-1", inputs=[make_proof(KEYSET_1, "input")])
    payment_key = PaymentProcessorKey(unit="sat", method="bolt11")

    sql_store.add_melt_request(melt_request, payment_key)
    sql_store.add_melt_quote(make_melt_quote("melt-1"))

    assert sql_store.get_melt_request("melt-1") == (melt_request, payment_key)
    assert sql_store.get_melt_request("melt-2") is None


def test_sql_auth_store_endpoints_round_trip(tmp_path):
    store = SqlAuthStore(tmp_path / "auth.sqlite")
    try:
        endpoints = {ProtectedEndpoint(method="GET", path="/v1/keys"): AuthRequired.CLEAR}
        store.add_protected_endpoints(endpoints)
        assert store.get_auth_for_endpoints() == endpoints
    finally:
        store.close()


def test_keyvalue_store_reports_unreadable_file(config):
    config.source_path.write_bytes(b"\x00garbage bytes, not a database" * 64)
    store = KeyValueMintStore(config.source_path)
    try:
        with pytest.raises(StoreReadError):
            store.get_mint_info()
    finally:
        store.close()


def test_sql_store_requires_mint_info(sql_store):
    with pytest.raises(StoreReadError):
        sql_store.get_mint_info()
    with pytest.raises(StoreReadError):
        sql_store.get_quote_ttl()


def with_fields(model, **fields):
    """Re-parse `model` with keys its class does not declare."""
    record = json.loads(model.to_json())
    record.update(fields)
    return type(model).from_json(json.dumps(record))


def test_sql_store_keeps_unknown_fields(sql_store):
    keyset = with_fields(make_keyset(KEYSET_1), amounts=[1, 2, 4])
    quote = with_fields(make_melt_quote("melt-1"), options={"mpp": True})
    signature = with_fields(BlindSignature(amount=2, keyset_id=KEYSET_1, c=make_pubkey(7).hex()), note="kept")

    sql_store.add_keyset_info(keyset)
    sql_store.add_melt_quote(quote)
    sql_store.add_blind_signatures([make_pubkey(8)], [signature])

    assert sql_store.get_keyset_infos() == [keyset]
    assert sql_store.get_keyset_infos()[0].model_extra == {"amounts": [1, 2, 4]}
    assert sql_store.get_melt_quotes() == [quote]
    assert sql_store.get_blind_signatures_for_keyset(KEYSET_1) == [signature]
