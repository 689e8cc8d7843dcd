"""Registry of chat history backends and availability detection."""

import logging
from concurrent.futures import ThreadPoolExecutor, wait

from ..provider import ChatProvider
from .claude_code import ClaudeCodeProvider
from .cline import ClineProvider, KiloCodeProvider, RooCodeProvider
from .codebuddy import CodeBuddyProvider
from .codex import CodexProvider
from .copilot_chat import CopilotChatProvider
from .cursor import CursorProvider
from .kiro import KiroProvider
from .lingma import LingmaProvider

logger = logging.getLogger(__name__)

# Registry order is sync order
PROVIDER_CLASSES = {
    "cursor": CursorProvider,
    "claude": ClaudeCodeProvider,
    "copilot_chat": CopilotChatProvider,
    "cline": ClineProvider,
    "roo_code": RooCodeProvider,
    "kilo_code": KiloCodeProvider,
    "codex": CodexProvider,
    "kiro": KiroProvider,
    "lingma": LingmaProvider,
    "codebuddy": CodeBuddyProvider,
}

# Sources with a single global store that is offered once per open folder
FOLDER_SCOPED = (LingmaProvider, CodeBuddyProvider)


def build_providers(open_folders=()) -> list[ChatProvider]:
    """Instantiate every registered provider in registry order."""
    providers = []
    for cls in PROVIDER_CLASSES.values():
        if cls in FOLDER_SCOPED:
            providers.append(cls(open_folders))
        else:
            providers.append(cls())
    return providers


def _probe(provider: ChatProvider) -> bool:
    try:
        return bool(provider.is_available())
    except Exception:
        logger.exception("Availability check failed for %s", provider.name)
        return False


def get_available_providers(providers: list[ChatProvider], timeout: float = 5.0) -> list[ChatProvider]:
    """Return the providers whose data exists on this machine.

    Checks run concurrently; a check that has not answered within
    ``timeout`` seconds counts as unavailable and does not hold up the rest.
    """
    if not providers:
        return []

    pool = ThreadPoolExecutor(max_workers=len(providers), thread_name_prefix="waylog-probe")
    futures = {provider.key: pool.submit(_probe, provider) for provider in providers}
    wait(futures.values(), timeout=timeout)
    pool.shutdown(wait=False, cancel_futures=True)

    available = []
    for provider in providers:
        future = futures[provider.key]
        if not future.done():
            logger.warning("Availability check for %s timed out after %.1fs", provider.name, timeout)
            continue
        if future.result():
            available.append(provider)
        else:
            logger.debug("%s not available", provider.name)
    return available
