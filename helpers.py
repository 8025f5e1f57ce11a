#!/usr/bin/env python3
import logging
import sys
from typing import Optional

from mint_migrator.config import MigrationConfig, resolve_work_dir
from mint_migrator.migrator import MintMigrator
from mint_migrator.verifier import MigrationVerifier, VerificationReport


def configure_logging(verbose: bool = False):
    """Send log records to stdout; DEBUG when verbose, INFO otherwise."""
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if not any(isinstance(h, logging.StreamHandler) for h in root_logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter('%(levelname)s:%(name)s: %(message)s'))
        root_logger.addHandler(console_handler)
    # SQL echo is far too noisy for a progress log
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def build_config(work_dir: Optional[str] = None, show_progress: bool = True) -> MigrationConfig:
    try:
        return MigrationConfig(work_dir=resolve_work_dir(work_dir), show_progress=show_progress)
    except Exception as e:
        logging.error(f"Invalid configuration: {str(e)}")
        raise


def migrate(config: MigrationConfig) -> dict:
    """
    Run the database migration.

    Refuses to start if the SQL store already exists. On failure the partial
    SQL store is left in place and must be removed before retrying.

    Returns:
        The migrator's stats dict.
    """
    migrator = None
    try:
        migrator = MintMigrator.open(config)
        return migrator.migrate_all()
    except Exception as e:
        logging.error(f"Migration failed: {str(e)}")
        raise
    finally:
        if migrator is not None:
            migrator.close()


def verify(config: MigrationConfig) -> VerificationReport:
    """Compare every entity family between the legacy and SQL stores."""
    verifier = None
    try:
        verifier = MigrationVerifier.open(config)
        return verifier.verify_migration()
    except Exception as e:
        logging.error(f"Verification failed: {str(e)}")
        raise
    finally:
        if verifier is not None:
            verifier.close()


def verify_signatures(config: MigrationConfig) -> VerificationReport:
    """Compare blind signature counts and amount sums per keyset."""
    verifier = None
    try:
        verifier = MigrationVerifier.open(config)
        return verifier.verify_blind_signatures()
    except Exception as e:
        logging.error(f"Blind signature verification failed: {str(e)}")
        raise
    finally:
        if verifier is not None:
            verifier.close()
