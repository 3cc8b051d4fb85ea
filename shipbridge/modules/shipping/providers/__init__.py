"""
Provider Registry and Factory

- ProviderFactory creates adapter instances by courier backend provider id
- The quote aggregator asks for ids listed in ENABLED_PROVIDERS, in that order
"""
from typing import Dict, Optional, Type
import logging

from shipbridge.modules.shipping.providers.base import BaseProvider

logger = logging.getLogger(__name__)

# Registry of provider implementations
_PROVIDER_REGISTRY: Dict[int, Type[BaseProvider]] = {}


def register_provider(provider_id: int):
    """
    Decorator to register a provider implementation.

    Usage:
        @register_provider(1)
        class FastwayProvider(BaseProvider):
            ...
    """
    def decorator(cls: Type[BaseProvider]):
        _PROVIDER_REGISTRY[provider_id] = cls
        logger.info(f"Registered provider: {provider_id} -> {cls.__name__}")
        return cls
    return decorator


class ProviderFactory:
    """Factory for creating provider adapter instances."""

    @classmethod
    def get(cls, provider_id: int) -> Optional[BaseProvider]:
        """
        Get a provider adapter.

        Args:
            provider_id: Courier backend provider id

        Returns:
            BaseProvider instance or None if no adapter is registered
        """
        provider_cls = _PROVIDER_REGISTRY.get(provider_id)
        if not provider_cls:
            logger.warning(f"No implementation registered for provider: {provider_id}")
            return None
        return provider_cls()


# Import providers to trigger registration
# These imports must be at the bottom to avoid circular imports
from shipbridge.modules.shipping.providers.fastway import FastwayProvider  # noqa: E402, F401
from shipbridge.modules.shipping.providers.nz_post import NZPostProvider  # noqa: E402, F401
