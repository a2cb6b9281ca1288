"""
Live-DOM snippet extraction and the fallback cascade used when a proposed
locator matches nothing.

Every attempt is time-boxed. A miss returns None; only the cascade
functions turn misses into an HTML comment placeholder, so a detected
component is never dropped just because its markup couldn't be pulled.
"""
import asyncio
from dataclasses import dataclass
from typing import Optional, Union

from playwright.async_api import Page

from app.config import Settings
from app.deadline import Deadline
from app.log_utils import log_event, log_warning
from app.models import AuthDetails, AuthType
from app.snippet import truncate_snippet


@dataclass(frozen=True)
class ExtractionStrategy:
    selector: str
    description: str


def quote_selector_text(text: str) -> str:
    """Double-quoted selector string literal."""
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


async def extract_with_selector(page: Page, selector: str, request_id: str, timeout_ms: int = 5000) -> Optional[str]:
    """outerHTML of the first element matching ``selector``, or None."""
    try:
        element = page.locator(selector).first
        try:
            await element.wait_for(state="attached", timeout=timeout_ms)
        except Exception:
            pass  # not there (yet); count() decides
        if await element.count() == 0:
            return None
        return await element.evaluate("el => el.outerHTML")
    except Exception as e:
        log_warning(request_id, "EXTRACTION_SELECTOR_ERROR", "Element extraction failed",
                    selector=selector, error=str(e))
        return None


# ============================================================
# Strategy builders
# ============================================================

def oauth_strategies(provider: str) -> list[ExtractionStrategy]:
    return [
        ExtractionStrategy(f"button:has-text({quote_selector_text(provider)})", f"Direct text match: {provider}"),
        ExtractionStrategy(f"button:has-text({quote_selector_text('Sign in with ' + provider)})", f"Sign in pattern: {provider}"),
        ExtractionStrategy(f"[data-provider={quote_selector_text(provider.lower())}]", f"Data attribute: {provider}"),
    ]


TRADITIONAL_STRATEGIES = [
    ExtractionStrategy('form:has(input[type="password"])', "Password form"),
    ExtractionStrategy('form[action*="login"]', "Login action form"),
    ExtractionStrategy('form[action*="signin"]', "Signin action form"),
    ExtractionStrategy('form[action*="auth"]', "Auth action form"),
]

GENERIC_PASSWORDLESS_STRATEGIES = [
    ExtractionStrategy('button:has-text("passkey")', "Passkey button"),
    ExtractionStrategy('button:has-text("magic link")', "Magic link button"),
    ExtractionStrategy('input[inputmode="numeric"]', "Numeric OTP input"),
    ExtractionStrategy("webauthn-subtle", "WebAuthn element"),
]


def passwordless_strategies(method: Optional[str]) -> list[ExtractionStrategy]:
    strategies = []
    if method:
        strategies.append(ExtractionStrategy(f"button:has-text({quote_selector_text(method)})", f"Method-specific: {method}"))
    return strategies + GENERIC_PASSWORDLESS_STRATEGIES


async def try_strategies_sequentially(page: Page, strategies: list[ExtractionStrategy],
                                      request_id: str, settings: Settings) -> Optional[str]:
    for strategy in strategies:
        snippet = await extract_with_selector(page, strategy.selector, request_id, settings.selector_timeout)
        if snippet:
            log_event(request_id, "FALLBACK_EXTRACTION_SUCCESS", strategy=strategy.description)
            return snippet
    return None


# ============================================================
# Cascades
# ============================================================

async def extract_oauth_fallback(page: Page, providers: list[str], request_id: str, settings: Settings) -> str:
    """
    Try each provider's strategies in turn. Each attempt gets at most
    ``fallback_strategy_timeout`` and all of them share one overall budget.
    """
    deadline = Deadline(settings.fallback_overall_timeout)
    log_event(request_id, "FALLBACK_EXTRACTION_OAUTH",
              providers=providers, maxTime=f"{settings.fallback_overall_timeout}ms")

    for provider in providers:
        for strategy in oauth_strategies(provider):
            if deadline.expired:
                break
            try:
                snippet = await deadline.run(
                    extract_with_selector(page, strategy.selector, request_id, settings.fallback_strategy_timeout),
                    timeout_ms=settings.fallback_strategy_timeout,
                )
            except asyncio.TimeoutError:
                snippet = None

            log_event(request_id, "FALLBACK_ATTEMPT", strategy=strategy.description, found=bool(snippet))
            if snippet:
                log_event(request_id, "FALLBACK_EXTRACTION_SUCCESS",
                          type="oauth", provider=provider, totalTime=f"{deadline.elapsed_ms}ms")
                return truncate_snippet(snippet, settings.snippet_max_length)

    log_warning(request_id, "FALLBACK_EXTRACTION_FAILED", "Could not extract OAuth within budget",
                timeElapsed=f"{deadline.elapsed_ms}ms", providersAttempted=providers)
    return f"<!-- OAuth detected: {', '.join(providers)} (extraction timed out after {deadline.elapsed_ms}ms) -->"


async def extract_traditional_fallback(page: Page, request_id: str, settings: Settings) -> str:
    snippet = await try_strategies_sequentially(page, TRADITIONAL_STRATEGIES, request_id, settings)
    if snippet:
        return truncate_snippet(snippet, settings.snippet_max_length)
    return "<!-- Traditional login detected (could not extract HTML) -->"


async def extract_passwordless_fallback(page: Page, method: Optional[str], request_id: str, settings: Settings) -> str:
    snippet = await try_strategies_sequentially(page, passwordless_strategies(method), request_id, settings)
    if snippet:
        return truncate_snippet(snippet, settings.snippet_max_length)
    return f"<!-- Passwordless ({method or 'unknown'}) detected (could not extract HTML) -->"


async def fallback_extraction(page: Page, component_type: Union[AuthType, str], details: Optional[AuthDetails],
                              request_id: str, settings: Settings) -> str:
    """Route to the cascade for ``component_type``; unknown types get a placeholder."""
    log_event(request_id, "FALLBACK_EXTRACTION_START", type=getattr(component_type, "value", component_type))

    if component_type == AuthType.OAUTH:
        return await extract_oauth_fallback(page, (details.providers if details else None) or [], request_id, settings)
    if component_type == AuthType.TRADITIONAL:
        return await extract_traditional_fallback(page, request_id, settings)
    if component_type == AuthType.PASSWORDLESS:
        return await extract_passwordless_fallback(page, details.method if details else None, request_id, settings)

    return f"<!-- {getattr(component_type, 'value', component_type)} auth detected (fallback failed) -->"
