import json

import pytest
from coincurve import PrivateKey

from mint_migrator.config import MigrationConfig
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
from mint_migrator.stores.keyvalue import (
    BLINDED_SIGNATURES_TABLE,
    CONFIG_TABLE,
    ENDPOINTS_TABLE,
    KEYSETS_TABLE,
    MELT_QUOTES_TABLE,
    MELT_REQUESTS_TABLE,
    MINT_INFO_KEY,
    MINT_QUOTES_TABLE,
    PROOF_STATES_TABLE,
    PROOFS_TABLE,
    QUOTE_TTL_KEY,
    KeyValueDatabase,
)

KEYSET_1 = "009a1f293253e41e"
KEYSET_2 = "00b4cd27d8861a44"


def make_pubkey(seed: int) -> bytes:
    return PrivateKey.from_int(seed).public_key.format(compressed=True)


def make_keyset(keyset_id: str, index: int = 0) -> KeysetInfo:
    return KeysetInfo(id=keyset_id, unit="sat", active=True, valid_from=1700000000,
                      derivation_path="m/0'/0'", derivation_path_index=index, max_order=32)


def make_proof(keyset_id: str, secret: str, amount: int = 8) -> Proof:
    return Proof(amount=amount, keyset_id=keyset_id, secret=secret, c=make_pubkey(len(secret) + amount).hex())


def make_signature(keyset_id: str, amount: int, seed: int) -> BlindSignature:
    return BlindSignature(amount=amount, keyset_id=keyset_id, c=make_pubkey(seed).hex())


def make_melt_quote(quote_id: str) -> MeltQuote:
    return MeltQuote(id=quote_id, unit="sat", amount=100, request="lnbc1000n1p...", fee_reserve=2,
                     state="PAID", expiry=1700003600, request_lookup_id=f"lookup-{quote_id}",
                     created_time=1700000000, paid_time=1700000100)


def make_mint_quote(quote_id: str) -> MintQuote:
    return MintQuote(id=quote_id, amount=64, unit="sat", request="lnbc640n1p...", state="ISSUED",
                     expiry=1700003600, request_lookup_id=f"lookup-{quote_id}", created_time=1700000000)


class LegacyStoreBuilder:
    """Writes records in the legacy key-value layout."""

    def __init__(self, path):
        self.db = KeyValueDatabase(path)

    def set_config(self, mint_info: MintInfo, quote_ttl: QuoteTTL):
        self.db.put(CONFIG_TABLE, MINT_INFO_KEY, mint_info.to_json())
        self.db.put(CONFIG_TABLE, QUOTE_TTL_KEY, quote_ttl.to_json())

    def add_keyset(self, keyset: KeysetInfo):
        self.db.put(KEYSETS_TABLE, keyset.id, keyset.to_json())

    def add_proof(self, proof, state=None):
        y = proof.y()
        self.db.put(PROOFS_TABLE, y, proof.to_json())
        if state is not None:
            self.db.put(PROOF_STATES_TABLE, y, json.dumps(state.value))
        return y

    def add_blind_signature(self, message: bytes, signature: BlindSignature):
        self.db.put(BLINDED_SIGNATURES_TABLE, message, signature.to_json())

    def add_melt_quote(self, quote: MeltQuote, melt_request: MeltRequest = None,
                       payment_key: PaymentProcessorKey = None):
        self.db.put(MELT_QUOTES_TABLE, quote.id, quote.to_json())
        if melt_request is not None:
            payload = {
                "request": melt_request.model_dump(mode="json", by_alias=True),
                "payment_key": payment_key.model_dump(mode="json"),
            }
            self.db.put(MELT_REQUESTS_TABLE, quote.id, json.dumps(payload))

    def add_mint_quote(self, quote: MintQuote):
        self.db.put(MINT_QUOTES_TABLE, quote.id, quote.to_json())

    def set_endpoint(self, endpoint: ProtectedEndpoint, auth):
        self.db.put(ENDPOINTS_TABLE, str(endpoint), json.dumps(auth.value if auth is not None else None))

    def close(self):
        self.db.close()


@pytest.fixture
def config(tmp_path):
    return MigrationConfig(work_dir=tmp_path, show_progress=False)


@pytest.fixture
def legacy(config):
    builder = LegacyStoreBuilder(config.source_path)
    yield builder
    builder.close()


@pytest.fixture
def legacy_auth(config):
    builder = LegacyStoreBuilder(config.auth_source_path)
    yield builder
    builder.close()


@pytest.fixture
def populated_legacy(legacy):
    """Two keysets: the first with three unspent proofs and one spent, the second empty."""
    legacy.set_config(
        MintInfo(name="Test Mint", pubkey=make_pubkey(1).hex(), version="mintd/0.9.0",
                 description="A mint for tests", nuts={"4": {"disabled": False}}, motd="hello"),
        QuoteTTL(mint_ttl=3600, melt_ttl=120),
    )
    legacy.add_keyset(make_keyset(KEYSET_1, 0))
    legacy.add_keyset(make_keyset(KEYSET_2, 1))

    for i in range(3):
        legacy.add_proof(make_proof(KEYSET_1, f"unspent-secret-{i}"), State.UNSPENT)
    legacy.add_proof(make_proof(KEYSET_1, "spent-secret"), State.SPENT)

    legacy.add_blind_signature(make_pubkey(101), make_signature(KEYSET_1, 8, 201))
    legacy.add_blind_signature(make_pubkey(102), make_signature(KEYSET_1, 16, 202))
    legacy.add_blind_signature(make_pubkey(103), make_signature(KEYSET_2, 4, 203))

    melt_request = MeltRequest(quote="melt-1", inputs=[make_proof(KEYSET_1, "melt-input")])
    legacy.add_melt_quote(make_melt_quote("melt-1"), melt_request, PaymentProcessorKey(unit="sat", method="bolt11"))
    legacy.add_mint_quote(make_mint_quote("mint-1"))
    legacy.add_mint_quote(make_mint_quote("mint-2"))
    return legacy


@pytest.fixture
def populated_auth(legacy_auth):
    legacy_auth.add_keyset(make_keyset("00auth0000000001"))
    proof = AuthProof(keyset_id="00auth0000000001", secret="auth-secret-1", c=make_pubkey(301).hex())
    legacy_auth.add_proof(proof, State.SPENT)
    legacy_auth.add_proof(AuthProof(keyset_id="00auth0000000001", secret="auth-secret-2", c=make_pubkey(302).hex()))
    legacy_auth.add_blind_signature(make_pubkey(401), make_signature("00auth0000000001", 1, 402))
    legacy_auth.set_endpoint(ProtectedEndpoint(method="POST", path="/v1/mint/bolt11"), AuthRequired.BLIND)
    legacy_auth.set_endpoint(ProtectedEndpoint(method="GET", path="/v1/mint/quote/bolt11"), AuthRequired.CLEAR)
    legacy_auth.set_endpoint(ProtectedEndpoint(method="POST", path="/v1/swap"), None)
    return legacy_auth
