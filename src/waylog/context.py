"""Application context: settings plus the provider registry for one project."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from .backends import build_providers, get_available_providers
from .config import Settings, load_settings
from .errors import UnknownSourceError
from .provider import ChatProvider

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything the sync engine and host surfaces share.

    Built once at startup and passed explicitly; nothing here is global.
    """

    settings: Settings
    providers: list[ChatProvider] = field(default_factory=list)

    @classmethod
    def create(cls, settings: Optional[Settings] = None, open_folders=()) -> "AppContext":
        return cls(
            settings=settings or load_settings(),
            providers=build_providers(open_folders),
        )

    def get_provider(self, key: str) -> ChatProvider:
        for provider in self.providers:
            if provider.key == key:
                return provider
        raise UnknownSourceError(key)

    def enabled_providers(self) -> list[ChatProvider]:
        """Providers selected by settings (all of them when none are named)."""
        if not self.settings.sources:
            return list(self.providers)
        return [p for p in self.providers if p.key in self.settings.sources]

    def available_providers(self) -> list[ChatProvider]:
        """Every provider whose data exists here, regardless of settings."""
        return get_available_providers(self.providers, self.settings.probe_timeout)

    def active_providers(self) -> list[ChatProvider]:
        """Enabled providers with data on this machine, in registry order."""
        active = get_available_providers(self.enabled_providers(), self.settings.probe_timeout)
        logger.debug("Active sources: %s", ", ".join(p.key for p in active) or "none")
        return active
