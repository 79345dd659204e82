"""
LLM Router
==========
Decides which LLM provider to use and manages provider switching.

Routing Strategy:
    1. Try the first configured, healthy provider (Gemini → Groq → OpenRouter)
    2. On failure (HTTP error, timeout, rate limit, empty output) → next provider
    3. When every provider fails, the capability returns its documented
       fallback (empty failure list / no patch / generation error)

Providers without an API key are never selected.

Provider Health Tracking:
    - Track consecutive failures per provider
    - After PROVIDER_COOLDOWN_THRESHOLD failures a provider sits out the next
      PROVIDER_COOLDOWN_SKIP_COUNT selections, then is re-enabled cautiously
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from app.core.config import (
    GEMINI_API_KEY, GROQ_API_KEY, OPENROUTER_API_KEY,
    LLM_TIMEOUT_SECONDS,
    PROVIDER_COOLDOWN_THRESHOLD, PROVIDER_COOLDOWN_SKIP_COUNT,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Provider Configuration
# ---------------------------------------------------------------------------
@dataclass
class ProviderConfig:
    """Configuration for a single LLM provider."""
    name: str
    api_key: str
    base_url: str
    model: str
    max_retries: int = 2
    timeout_seconds: float = LLM_TIMEOUT_SECONDS

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


GEMINI_CONFIG = ProviderConfig(
    name="gemini",
    api_key=GEMINI_API_KEY or "",
    base_url="https://generativelanguage.googleapis.com/v1beta",
    model="gemini-2.5-flash",
)

GROQ_CONFIG = ProviderConfig(
    name="groq",
    api_key=GROQ_API_KEY or "",
    base_url="https://api.groq.com/openai/v1",
    model="llama-3.3-70b-versatile",
)

OPENROUTER_CONFIG = ProviderConfig(
    name="openrouter",
    api_key=OPENROUTER_API_KEY or "",
    base_url="https://openrouter.ai/api/v1",
    model="stepfun/step-3.5-flash:free",
    max_retries=1,
)


# ---------------------------------------------------------------------------
# Provider Health Tracker
# ---------------------------------------------------------------------------
@dataclass
class ProviderHealth:
    """Tracks consecutive failures and cooldown for a provider."""
    consecutive_failures: int = 0
    is_healthy: bool = True
    max_failures: int = PROVIDER_COOLDOWN_THRESHOLD
    cooldown_remaining: int = 0

    def record_failure(self) -> None:
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.max_failures:
            self.is_healthy = False
            self.cooldown_remaining = PROVIDER_COOLDOWN_SKIP_COUNT
            logger.warning(
                "Provider entering cooldown after %d failures (skip %d calls)",
                self.consecutive_failures, self.cooldown_remaining,
            )

    def record_success(self) -> None:
        self.consecutive_failures = 0

    def tick_cooldown(self) -> None:
        """Decrement cooldown. Auto-re-enable when cooldown expires."""
        if self.cooldown_remaining > 0:
            self.cooldown_remaining -= 1
            if self.cooldown_remaining <= 0:
                self.is_healthy = True
                # One more failure puts it straight back into cooldown
                self.consecutive_failures = max(1, self.max_failures - 1)
                logger.info("Provider cooldown expired, re-enabled (cautious)")


# ---------------------------------------------------------------------------
# LLM Router
# ---------------------------------------------------------------------------
class LLMRouter:
    """
    Routes LLM requests to the best available provider.

    Usage:
        router = LLMRouter()
        for provider in router.candidates():
            # ... make request ...
            router.report_success(provider.name)   # or report_failure(...)
    """

    def __init__(self, providers: Optional[List[ProviderConfig]] = None) -> None:
        if providers is None:
            providers = [GEMINI_CONFIG, GROQ_CONFIG, OPENROUTER_CONFIG]
        self._providers = [p for p in providers if p.configured]
        self._health: Dict[str, ProviderHealth] = {p.name: ProviderHealth() for p in self._providers}
        if not self._providers:
            logger.warning("No LLM provider API key configured; AI capabilities will be unavailable")

    def candidates(self) -> List[ProviderConfig]:
        """
        Providers to try for one request, healthiest first.

        Unhealthy providers are appended at the end so a request is still
        attempted when every provider is cooling down.
        """
        for h in self._health.values():
            h.tick_cooldown()
        healthy = [p for p in self._providers if self._health[p.name].is_healthy]
        cooling = [p for p in self._providers if not self._health[p.name].is_healthy]
        return healthy + cooling

    def report_success(self, provider_name: str) -> None:
        health = self._health.get(provider_name)
        if health:
            health.record_success()

    def report_failure(self, provider_name: str) -> None:
        health = self._health.get(provider_name)
        if health:
            health.record_failure()

    def get_health(self, provider_name: str) -> Optional[ProviderHealth]:
        return self._health.get(provider_name)
