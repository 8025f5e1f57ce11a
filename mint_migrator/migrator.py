import logging
from enum import Enum
from typing import Any, Callable, List, NamedTuple, Optional

from mint_migrator.config import MigrationConfig
from mint_migrator.errors import InvariantViolation, PreconditionError
from mint_migrator.models import State
from mint_migrator.stores import (
    AuthSource,
    AuthTarget,
    KeyValueAuthStore,
    KeyValueMintStore,
    MintSource,
    MintTarget,
    SqlAuthStore,
    SqlMintStore,
)
from mint_migrator.transformers import (
    decode_auth_proof,
    decode_blind_signature,
    filter_protected_endpoints,
    partition_proof_states,
)
from mint_migrator.utils import progress_bar_iter

logger = logging.getLogger(__name__)


class StepPolicy(str, Enum):
    FATAL = "fatal"
    BEST_EFFORT = "best_effort"


class StepResult(NamedTuple):
    ok: bool
    value: Any = None


def check_preconditions(config: MigrationConfig) -> None:
    """Refuse to run unless the source exists and no target would be overwritten."""
    if not config.source_path.exists():
        raise PreconditionError(f"Source database not found at {config.source_path}")
    if config.target_path.exists():
        raise PreconditionError(
            f"SQL database already exists at {config.target_path}. Will not overwrite existing database."
        )
    if config.has_auth and config.auth_target_path.exists():
        raise PreconditionError(
            f"Auth SQL database already exists at {config.auth_target_path}. Will not overwrite existing database."
        )


class MintMigrator:
    def __init__(self, config: MigrationConfig, source: MintSource, target: MintTarget,
                 auth_source: Optional[AuthSource] = None, auth_target: Optional[AuthTarget] = None):
        if (auth_source is None) != (auth_target is None):
            raise ValueError("Auth source and auth target must be given together")
        self.config = config
        self.source = source
        self.target = target
        self.auth_source = auth_source
        self.auth_target = auth_target
        self.migration_stats = {
            "mint_info": False,
            "quote_ttl": False,
            "melt_quotes": 0,
            "melt_requests_paired": 0,
            "melt_requests_missing": 0,
            "mint_quotes": 0,
            "keysets": 0,
            "proofs": 0,
            "proofs_spent": 0,
            "proofs_pending": 0,
            "proof_states_dropped": 0,
            "blind_signatures": 0,
            "best_effort_failures": [],
            "auth_migrated": False,
            "auth_keysets": 0,
            "auth_proofs": 0,
            "auth_blind_signatures": 0,
            "protected_endpoints": 0,
        }

    @classmethod
    def open(cls, config: MigrationConfig) -> "MintMigrator":
        """Check preconditions, then open the legacy stores and create the SQL stores."""
        check_preconditions(config)
        stores = []
        try:
            stores.append(KeyValueMintStore(config.source_path))
            stores.append(SqlMintStore(config.target_path))
            if config.has_auth:
                logger.info("Auth database detected")
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

    def _run_step(self, name: str, action: Callable[[], Any], policy: StepPolicy = StepPolicy.FATAL) -> StepResult:
        """Run one step. Fatal steps propagate errors; best-effort steps log and record them."""
        if policy is StepPolicy.FATAL:
            return StepResult(True, action())
        try:
            return StepResult(True, action())
        except Exception as e:
            logger.warning(f"{name} failed, continuing: {e}")
            self.migration_stats["best_effort_failures"].append(name)
            return StepResult(False)

    def migrate_all(self) -> dict:
        """Copy every entity family in dependency order. Any fatal error aborts the run."""
        logger.info("Starting database migration...")
        logger.info(f"Source: {self.config.source_path}")
        logger.info(f"Target: {self.config.target_path}")

        self._run_step("mint info", self.migrate_mint_info)
        self._run_step("quotes", self.migrate_quotes)
        keyset_ids = self._run_step("keysets", self.migrate_keysets).value
        self._run_step("proofs", lambda: self.migrate_proofs(keyset_ids))
        self._run_step("blind signatures", self.migrate_blind_signatures)

        if self.auth_source is not None:
            self._run_step("auth database", self.migrate_auth)
        else:
            logger.info("No auth database found, skipping auth migration")

        logger.info("Migration completed successfully!")
        self._log_summary()
        return self.migration_stats

    def migrate_mint_info(self):
        logger.info("Migrating mint info...")
        self.target.set_mint_info(self.source.get_mint_info())
        self.migration_stats["mint_info"] = True

        logger.info("Migrating quote TTL info...")
        self.target.set_quote_ttl(self.source.get_quote_ttl())
        self.migration_stats["quote_ttl"] = True
        logger.info("Mint info migration complete")

    def migrate_quotes(self):
        logger.info("Starting quotes migration...")
        melt_quotes = self.source.get_melt_quotes()
        logger.info(f"Found {len(melt_quotes)} melt quotes to migrate")

        for melt_quote in progress_bar_iter(melt_quotes, total=len(melt_quotes), desc="Melt quotes",
                                            enabled=self.config.show_progress):
            self._pair_melt_request(melt_quote.id)
            self.target.add_melt_quote(melt_quote)
            self.migration_stats["melt_quotes"] += 1

        mint_quotes = self.source.get_mint_quotes()
        logger.info(f"Found {len(mint_quotes)} mint quotes to migrate")

        for mint_quote in progress_bar_iter(mint_quotes, total=len(mint_quotes), desc="Mint quotes",
                                            enabled=self.config.show_progress):
            self.target.add_mint_quote(mint_quote)
            self.migration_stats["mint_quotes"] += 1

        logger.info("Quotes migration complete")

    def _pair_melt_request(self, quote_id: str):
        lookup = self._run_step(f"Melt request lookup for quote {quote_id}",
                                lambda: self.source.get_melt_request(quote_id), StepPolicy.BEST_EFFORT)
        if not lookup.ok:
            return
        if lookup.value is None:
            logger.debug(f"No melt request stored for quote {quote_id}")
            self.migration_stats["melt_requests_missing"] += 1
            return

        melt_request, payment_key = lookup.value
        written = self._run_step(f"Melt request write for quote {quote_id}",
                                 lambda: self.target.add_melt_request(melt_request, payment_key),
                                 StepPolicy.BEST_EFFORT)
        if written.ok:
            self.migration_stats["melt_requests_paired"] += 1

    def migrate_keysets(self) -> List[str]:
        logger.info("Migrating keysets...")
        keyset_ids = []
        for keyset in self.source.get_keyset_infos():
            keyset_ids.append(keyset.id)
            self.target.add_keyset_info(keyset)
        self.migration_stats["keysets"] = len(keyset_ids)
        logger.info(f"Migrated {len(keyset_ids)} keysets")
        return keyset_ids

    def migrate_proofs(self, keyset_ids: List[str]):
        logger.info(f"Starting proofs migration for {len(keyset_ids)} keysets...")

        for keyset_id in progress_bar_iter(keyset_ids, total=len(keyset_ids), desc="Proofs",
                                           get_desc=lambda k: k, enabled=self.config.show_progress):
            proofs, states = self.source.get_proofs_by_keyset_id(keyset_id)
            if len(proofs) != len(states):
                raise InvariantViolation(
                    f"Keyset {keyset_id} returned {len(proofs)} proofs but {len(states)} states"
                )
            logger.debug(f"Found {len(proofs)} proofs for keyset {keyset_id}")

            self.target.add_proofs(proofs)

            spent_ys, pending_ys, dropped = partition_proof_states(proofs, states)
            if dropped:
                logger.warning(f"{dropped} proofs in keyset {keyset_id} have a state other than "
                               f"SPENT/PENDING/UNSPENT and will default to UNSPENT")
            logger.debug(f"Updating states - Spent: {len(spent_ys)}, Pending: {len(pending_ys)}")
            self.target.update_proofs_states(spent_ys, State.SPENT)
            self.target.update_proofs_states(pending_ys, State.PENDING)

            self.migration_stats["proofs"] += len(proofs)
            self.migration_stats["proofs_spent"] += len(spent_ys)
            self.migration_stats["proofs_pending"] += len(pending_ys)
            self.migration_stats["proof_states_dropped"] += dropped

        logger.info("Proofs migration complete")

    def migrate_blind_signatures(self):
        logger.info("Starting blind signatures migration...")
        # Decode everything before writing so a corrupt record leaves no signatures behind
        decoded = [decode_blind_signature(key, raw) for key, raw in self.source.scan_blind_signatures()]
        logger.info(f"Found {len(decoded)} blind signatures to migrate")

        messages = [message for message, _ in decoded]
        signatures = [signature for _, signature in decoded]
        self.target.add_blind_signatures(messages, signatures)
        self.migration_stats["blind_signatures"] = len(decoded)
        logger.info("Blind signatures migration complete")

    def migrate_auth(self):
        logger.info("Migrating auth database...")

        keysets = self.auth_source.get_keyset_infos()
        for keyset in keysets:
            self.auth_target.add_keyset_info(keyset)
        self.migration_stats["auth_keysets"] = len(keysets)

        auth_proofs = [decode_auth_proof(key, raw) for key, raw in self.auth_source.scan_proofs()]
        ys = [proof.y() for proof in auth_proofs]
        states = self.auth_source.get_proofs_states(ys)
        if len(auth_proofs) != len(states):
            raise InvariantViolation(f"Auth store returned {len(auth_proofs)} proofs but {len(states)} states")
        for proof, y, state in zip(auth_proofs, ys, states):
            self.auth_target.add_proof(proof)
            if state is not None:
                self.auth_target.update_proof_state(y, state)
        self.migration_stats["auth_proofs"] = len(auth_proofs)

        decoded = [decode_blind_signature(key, raw) for key, raw in self.auth_source.scan_blind_signatures()]
        self.auth_target.add_blind_signatures([message for message, _ in decoded],
                                              [signature for _, signature in decoded])
        self.migration_stats["auth_blind_signatures"] = len(decoded)

        endpoints = filter_protected_endpoints(self.auth_source.get_auth_for_endpoints())
        self.auth_target.add_protected_endpoints(endpoints)
        self.migration_stats["protected_endpoints"] = len(endpoints)

        self.migration_stats["auth_migrated"] = True
        logger.info("Auth database migration complete")

    def _log_summary(self):
        """Log migration summary statistics."""
        stats = self.migration_stats
        logger.info("\n=== Migration Summary ===")
        logger.info(f"Mint info: {'migrated' if stats['mint_info'] else 'missing'}")
        logger.info(f"Quote TTL: {'migrated' if stats['quote_ttl'] else 'missing'}")
        logger.info(f"Melt quotes: {stats['melt_quotes']} "
                    f"({stats['melt_requests_paired']} with melt request, "
                    f"{stats['melt_requests_missing']} without)")
        logger.info(f"Mint quotes: {stats['mint_quotes']}")
        logger.info(f"Keysets: {stats['keysets']}")
        logger.info(f"Proofs: {stats['proofs']} "
                    f"(spent: {stats['proofs_spent']}, pending: {stats['proofs_pending']})")
        logger.info(f"Blind signatures: {stats['blind_signatures']}")

        if stats["proof_states_dropped"]:
            logger.info(f"Proof states left at default: {stats['proof_states_dropped']}")

        if stats["best_effort_failures"]:
            logger.info("\nSkipped after failure:")
            for name in stats["best_effort_failures"]:
                logger.info(f"  {name}")

        if stats["auth_migrated"]:
            logger.info("\nAuth database:")
            logger.info(f"  Keysets: {stats['auth_keysets']}")
            logger.info(f"  Proofs: {stats['auth_proofs']}")
            logger.info(f"  Blind signatures: {stats['auth_blind_signatures']}")
            logger.info(f"  Protected endpoints: {stats['protected_endpoints']}")
