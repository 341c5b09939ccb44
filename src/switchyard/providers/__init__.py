"""Provider adapters.

Adapter classes are imported lazily through ``create_provider`` so an
unused SDK is never loaded.
"""

from .base import Provider
from .registry import PROVIDERS, ProviderSpec, create_provider, get_spec

__all__ = [
    "PROVIDERS",
    "Provider",
    "ProviderSpec",
    "create_provider",
    "get_spec",
]
