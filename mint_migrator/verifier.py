"""
Reconciliation of a migrated SQL store against its legacy source.

Both passes re-read the two stores from scratch and stop at the first
mismatch with a VerificationError naming the entity family and key.
"""
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel

from mint_migrator.config import MigrationConfig
from mint_migrator.errors import PreconditionError, VerificationError
from mint_migrator.stores import (
    AuthReader,
    KeyValueAuthStore,
    KeyValueMintStore,
    MintReader,
    SqlAuthStore,
    SqlMintStore,
)
from mint_migrator.transformers import filter_protected_endpoints
from mint_migrator.utils import progress_bar_iter

logger = logging.getLogger(__name__)


class KeysetSignatureTotals(BaseModel):
    keyset_id: str
    count: int
    amount: int


class VerificationReport(BaseModel):
    families: List[str] = []
    keysets: int = 0
    proofs: int = 0
    mint_quotes: int = 0
    melt_quotes: int = 0
    auth_verified: bool = False
    auth_keysets: int = 0
    protected_endpoints: int = 0
    blind_signatures: int = 0
    blind_signature_amount: int = 0
    keyset_signatures: List[KeysetSignatureTotals] = []


def _expect_equal(family: str, source_value, target_value, message: str, key: Optional[str] = None) -> None:
    if source_value != target_value:
        raise VerificationError(family, f"{message}: source has {source_value!r}, target has {target_value!r}", key)


class MigrationVerifier:
    def __init__(self, config: MigrationConfig, source: MintReader, target: MintReader,
                 auth_source: Optional[AuthReader] = None, auth_target: Optional[AuthReader] = None):
        self.config = config
        self.source = source
        self.target = target
        self.auth_source = auth_source
        self.auth_target = auth_target

    @classmethod
    def open(cls, config: MigrationConfig) -> "MigrationVerifier":
        for path in (config.source_path, config.target_path):
            if not path.exists():
                raise PreconditionError(f"Cannot verify: {path} does not exist")
        if config.has_auth and not config.auth_target_path.exists():
            raise PreconditionError(f"Cannot verify: {config.auth_target_path} does not exist")

        stores = []
        try:
            stores.append(KeyValueMintStore(config.source_path))
            stores.append(SqlMintStore(config.target_path))
            if config.has_auth:
                stores.append(KeyValueAuthStore(config.auth_source_path))
                stores.append(SqlAuthStore(config.auth_target_path))
        except Exception:
            for store in stores:
                store.close()
            raise
        return cls(config, *stores)

    def close(self) -> None:
        for store in (self.source, self.target, self.auth_source, self.auth_target):
            if store is not None:
                store.close()

    def verify_migration(self) -> VerificationReport:
        logger.info("\n=== Starting Database Verification ===")
        logger.info(f"Comparing source: {self.config.source_path}")
        logger.info(f"With target: {self.config.target_path}")

        report = VerificationReport()
        self.verify_config(report)
        keyset_ids = self.verify_keysets(report)
        self.verify_proofs(keyset_ids, report)
        self.verify_quotes(report)

        if self.auth_source is not None:
            self.verify_auth(report)
        else:
            logger.info("No auth database found, skipping auth verification")

        logger.info("=== Summary ===")
        logger.info("✓ Mint Info")
        logger.info("✓ Quote TTL")
        logger.info(f"✓ {report.keysets} Keysets")
        logger.info(f"✓ {report.proofs} Total Proofs")
        logger.info(f"✓ {report.mint_quotes} Mint Quotes")
        logger.info(f"✓ {report.melt_quotes} Melt Quotes")
        if report.auth_verified:
            logger.info("✓ Auth Database Verified")
        return report

    def verify_config(self, report: VerificationReport):
        logger.info("Checking mint info...")
        _expect_equal("mint_info", self.source.get_mint_info(), self.target.get_mint_info(), "Mint info mismatch")
        report.families.append("mint_info")

        logger.info("Checking quote TTL...")
        _expect_equal("quote_ttl", self.source.get_quote_ttl(), self.target.get_quote_ttl(), "Quote TTL mismatch")
        report.families.append("quote_ttl")

    def verify_keysets(self, report: VerificationReport) -> List[str]:
        logger.info("Checking keysets...")
        source_keysets = self.source.get_keyset_infos()
        target_keysets = {keyset.id: keyset for keyset in self.target.get_keyset_infos()}
        _expect_equal("keysets", len(source_keysets), len(target_keysets), "Keyset count mismatch")
        for keyset in source_keysets:
            if target_keysets.get(keyset.id) != keyset:
                raise VerificationError("keysets", "Missing keyset in target", keyset.id)

        report.keysets = len(source_keysets)
        report.families.append("keysets")
        logger.info(f"All {len(source_keysets)} keysets match")
        return [keyset.id for keyset in source_keysets]

    def verify_proofs(self, keyset_ids: List[str], report: VerificationReport):
        logger.info("Checking proofs for each keyset...")
        total_proofs = 0
        for keyset_id in progress_bar_iter(keyset_ids, total=len(keyset_ids), desc="Verifying proofs",
                                           enabled=self.config.show_progress):
            source_proofs, source_states = self.source.get_proofs_by_keyset_id(keyset_id)
            target_proofs, _ = self.target.get_proofs_by_keyset_id(keyset_id)
            _expect_equal("proofs", len(source_proofs), len(target_proofs),
                          "Proof count mismatch for keyset", keyset_id)

            target_by_y = {proof.y(): proof for proof in target_proofs}
            stated_ys = []
            expected_states = []
            for proof, state in zip(source_proofs, source_states):
                y = proof.y()
                if target_by_y.get(y) != proof:
                    raise VerificationError("proofs", "Missing proof in target", y.hex())
                if state is not None:
                    stated_ys.append(y)
                    expected_states.append(state)

            target_states = self.target.get_proofs_states(stated_ys)
            for y, expected, actual in zip(stated_ys, expected_states, target_states):
                if actual != expected:
                    raise VerificationError(
                        "proof_states", f"Proof state mismatch: source has {expected.value}, "
                                        f"target has {actual.value if actual else None}", y.hex())
            total_proofs += len(source_proofs)

        report.proofs = total_proofs
        report.families.append("proofs")
        logger.info(f"All {total_proofs} proofs match across all keysets")

    def verify_quotes(self, report: VerificationReport):
        logger.info("Checking quotes...")
        source_mint_quotes = self.source.get_mint_quotes()
        target_mint_quotes = {quote.id: quote for quote in self.target.get_mint_quotes()}
        _expect_equal("mint_quotes", len(source_mint_quotes), len(target_mint_quotes), "Mint quote count mismatch")
        for quote in source_mint_quotes:
            if target_mint_quotes.get(quote.id) != quote:
                raise VerificationError("mint_quotes", "Missing mint quote in target", quote.id)
        report.mint_quotes = len(source_mint_quotes)
        report.families.append("mint_quotes")
        logger.info(f"All {len(source_mint_quotes)} mint quotes match")

        source_melt_quotes = self.source.get_melt_quotes()
        target_melt_quotes = {quote.id: quote for quote in self.target.get_melt_quotes()}
        _expect_equal("melt_quotes", len(source_melt_quotes), len(target_melt_quotes), "Melt quote count mismatch")
        for quote in source_melt_quotes:
            if target_melt_quotes.get(quote.id) != quote:
                raise VerificationError("melt_quotes", "Missing melt quote in target", quote.id)
        report.melt_quotes = len(source_melt_quotes)
        report.families.append("melt_quotes")
        logger.info(f"All {len(source_melt_quotes)} melt quotes match")

    def verify_auth(self, report: VerificationReport):
        logger.info("\n=== Verifying Auth Database ===")
        logger.info("Checking auth keysets...")
        source_keysets = self.auth_source.get_keyset_infos()
        target_keysets = {keyset.id: keyset for keyset in self.auth_target.get_keyset_infos()}
        _expect_equal("auth_keysets", len(source_keysets), len(target_keysets), "Auth keyset count mismatch")
        for keyset in source_keysets:
            if target_keysets.get(keyset.id) != keyset:
                raise VerificationError("auth_keysets", "Missing auth keyset in target", keyset.id)
        report.auth_keysets = len(source_keysets)
        logger.info(f"All {len(source_keysets)} auth keysets match")

        logger.info("Checking protected endpoints...")
        # Endpoints without an auth value are not migrated
        source_endpoints = filter_protected_endpoints(self.auth_source.get_auth_for_endpoints())
        target_endpoints: Dict = self.auth_target.get_auth_for_endpoints()
        _expect_equal("protected_endpoints", len(source_endpoints), len(target_endpoints),
                      "Protected endpoints count mismatch")
        for endpoint, auth in source_endpoints.items():
            if endpoint not in target_endpoints:
                raise VerificationError("protected_endpoints", "Missing protected endpoint in target", str(endpoint))
            _expect_equal("protected_endpoints", auth, target_endpoints[endpoint],
                          "Protected endpoint auth mismatch", str(endpoint))
        report.protected_endpoints = len(source_endpoints)
        report.auth_verified = True
        report.families.extend(["auth_keysets", "protected_endpoints"])
        logger.info(f"All {len(source_endpoints)} protected endpoints match")

    def verify_blind_signatures(self) -> VerificationReport:
        logger.info("\n=== Verifying Blind Signatures ===")
        report = VerificationReport()
        keysets = self.source.get_keyset_infos()
        logger.info(f"Checking blind signatures across {len(keysets)} keysets...")

        total_source_amount = 0
        total_target_amount = 0
        total_signatures = 0
        for keyset in keysets:
            logger.info(f"Checking blind signatures for keyset: {keyset.id}")
            source_sigs = self.source.get_blind_signatures_for_keyset(keyset.id)
            source_amount = sum(sig.amount for sig in source_sigs)
            logger.info(f"Found {len(source_sigs)} signatures in source with total amount {source_amount}")

            target_sigs = self.target.get_blind_signatures_for_keyset(keyset.id)
            target_amount = sum(sig.amount for sig in target_sigs)
            logger.info(f"Found {len(target_sigs)} signatures in target with total amount {target_amount}")

            _expect_equal("blind_signatures", len(source_sigs), len(target_sigs),
                          "Blind signature count mismatch", keyset.id)
            _expect_equal("blind_signatures", source_amount, target_amount,
                          "Total amount mismatch", keyset.id)

            total_source_amount += source_amount
            total_target_amount += target_amount
            total_signatures += len(source_sigs)
            report.keyset_signatures.append(
                KeysetSignatureTotals(keyset_id=keyset.id, count=len(source_sigs), amount=source_amount)
            )
            logger.info(f"All blind signatures match for keyset {keyset.id}")

        _expect_equal("blind_signatures", total_source_amount, total_target_amount,
                      "Total amounts don't match across all keysets")
        report.blind_signatures = total_signatures
        report.blind_signature_amount = total_source_amount
        report.families.append("blind_signatures")

        logger.info("Blind signatures verification complete!")
        logger.info(f"Total blind signatures: {total_signatures}")
        logger.info(f"Total amount: {total_source_amount} units")
        return report
