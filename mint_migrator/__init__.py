"""
Mint Store Migrator

Moves a mint's persisted state from the legacy key-value store to the SQL
store, and reconciles the two afterwards.
"""

from .config import MigrationConfig
from .migrator import MintMigrator
from .verifier import MigrationVerifier, VerificationReport

__all__ = ['MigrationConfig', 'MintMigrator', 'MigrationVerifier', 'VerificationReport']
