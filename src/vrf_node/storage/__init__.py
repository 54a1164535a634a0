from vrf_node.storage.secret_cache import MemorySecretCache, SecretCache, SqliteSecretCache

__all__ = ["MemorySecretCache", "SecretCache", "SqliteSecretCache"]
