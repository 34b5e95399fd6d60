from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from app.domain.errors import ConfigError, NoActiveProviderError, ProviderNotFoundError

from .base import PaymentProvider

logger = logging.getLogger(__name__)

MAX_PROVIDERS = 10


class ProviderRegistry:
    """Named set of provider instances with one active default.

    Mutations are serialized; lookups read a snapshot of the mapping so a
    concurrent registration never exposes a half-updated state.
    """

    def __init__(self, default_provider: str | None = None, max_providers: int = MAX_PROVIDERS) -> None:
        self._providers: Dict[str, PaymentProvider] = {}
        self._active: Optional[str] = None
        self._default = (default_provider or "").lower() or None
        self._max_providers = max_providers
        self._pinned = False
        self._lock = threading.RLock()

    def register(self, provider_type: str, provider: PaymentProvider, skip_config_check: bool = False) -> bool:
        key = provider_type.lower()
        with self._lock:
            if not skip_config_check and not provider.is_configured():
                logger.warning("provider not configured, skipping registration", extra={"provider": key})
                return False
            if key not in self._providers and len(self._providers) >= self._max_providers:
                logger.warning("provider registry full, skipping registration", extra={"provider": key})
                return False
            providers = dict(self._providers)
            providers[key] = provider
            self._providers = providers
            self._choose_active()
        logger.info("provider registered", extra={"provider": key})
        return True

    def register_with_config(self, provider_type: str, provider: PaymentProvider) -> bool:
        key = provider_type.lower()
        with self._lock:
            if not self.register(key, provider, skip_config_check=True):
                return False
            if len(self._providers) == 1 or key == self._default:
                self._active = key
        return True

    def unregister(self, provider_type: str) -> Optional[PaymentProvider]:
        key = provider_type.lower()
        with self._lock:
            providers = dict(self._providers)
            removed = providers.pop(key, None)
            self._providers = providers
            if removed is not None and self._active == key:
                self._active = next(iter(providers), None)
                self._pinned = False
        if removed is not None:
            logger.info("provider unregistered", extra={"provider": key})
        return removed

    def set_active(self, provider_type: str) -> None:
        key = provider_type.lower()
        with self._lock:
            if key not in self._providers:
                raise ConfigError(f"Payment provider '{provider_type}' is not registered", provider=key)
            self._active = key
            self._pinned = True
        logger.info("active provider changed", extra={"provider": key})

    def get(self, provider_type: str) -> Optional[PaymentProvider]:
        return self._providers.get(provider_type.lower())

    def route(self, provider_type: str | None = None) -> PaymentProvider:
        providers = self._providers
        if provider_type:
            provider = providers.get(provider_type.lower())
            if provider is None:
                raise ProviderNotFoundError(f"Payment provider '{provider_type}' is not registered")
            return provider
        active = self._active
        if active is None or active not in providers:
            raise NoActiveProviderError("No active payment provider configured")
        return providers[active]

    def get_active(self) -> PaymentProvider:
        return self.route(None)

    def active_provider_name(self) -> str:
        return self._active or "none"

    def get_registered_providers(self) -> List[str]:
        return list(self._providers)

    def items(self) -> List[tuple[str, PaymentProvider]]:
        return list(self._providers.items())

    def __contains__(self, provider_type: object) -> bool:
        return isinstance(provider_type, str) and provider_type.lower() in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    def _choose_active(self) -> None:
        if self._pinned and self._active in self._providers:
            return
        if self._default and self._default in self._providers:
            self._active = self._default
        elif self._active not in self._providers:
            self._active = next(iter(self._providers), None)
