"""Clients for external registries (KvK, BTW) and their shared plumbing."""

from src.integrations.breaker import RegistryCircuitBreaker
from src.integrations.btw import BTWClient, BTWValidationResult
from src.integrations.cache import RegistryCache
from src.integrations.kvk import KvKClient, KvKValidationResult

__all__ = [
    "BTWClient",
    "BTWValidationResult",
    "KvKClient",
    "KvKValidationResult",
    "RegistryCache",
    "RegistryCircuitBreaker",
]
