from .base import AuthReader, AuthSource, AuthTarget, MintReader, MintSource, MintTarget
from .keyvalue import KeyValueAuthStore, KeyValueDatabase, KeyValueMintStore
from .relational import SqlAuthStore, SqlMintStore

__all__ = [
    'AuthReader', 'AuthSource', 'AuthTarget', 'MintReader', 'MintSource', 'MintTarget',
    'KeyValueAuthStore', 'KeyValueDatabase', 'KeyValueMintStore',
    'SqlAuthStore', 'SqlMintStore',
]
