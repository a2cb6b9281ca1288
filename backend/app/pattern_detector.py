"""
Heuristic detection used when no Gemini key is configured or the AI path
fails. Covers password forms and well-known OAuth providers
only. Passwordless flows are not detected here.
"""
import asyncio
import re
import time
from typing import Optional

from playwright.async_api import Page

from app.config import Settings
from app.fallback import quote_selector_text, extract_with_selector
from app.log_utils import elapsed_ms, log_event
from app.models import AuthComponent, AuthDetails, AuthType, DetectionMethod, DetectionResult
from app.snippet import truncate_snippet

PASSWORD_FORM_SELECTOR = 'form:has(input[type="password"])'
OAUTH_PROVIDERS = ["google", "facebook", "github", "twitter", "apple", "microsoft"]

EMAIL_INPUT = re.compile(r"<input\b[^>]*\btype\s*=\s*[\"']?(?:email|text)\b", re.IGNORECASE)
PASSWORD_INPUT = re.compile(r"<input\b[^>]*\btype\s*=\s*[\"']?password\b", re.IGNORECASE)


def classify_form_fields(form_html: str) -> list[str]:
    fields = []
    if EMAIL_INPUT.search(form_html):
        fields.append("email")
    if PASSWORD_INPUT.search(form_html):
        fields.append("password")
    return fields


def provider_selector(provider: str) -> str:
    text = quote_selector_text(provider)
    return f"button:has-text({text}), a:has-text({text})"


async def detect_traditional_pattern(page: Page, request_id: str, settings: Settings) -> Optional[AuthComponent]:
    form_html = await extract_with_selector(page, PASSWORD_FORM_SELECTOR, request_id, settings.selector_timeout)
    if not form_html:
        return None

    fields = classify_form_fields(form_html)
    log_event(request_id, "PATTERN_FOUND", type="traditional", fields=fields)
    return AuthComponent(
        type=AuthType.TRADITIONAL,
        snippet=truncate_snippet(form_html, settings.snippet_max_length),
        details=AuthDetails(fields=fields, locator_hint=PASSWORD_FORM_SELECTOR),
    )


async def detect_oauth_pattern(page: Page, request_id: str, settings: Settings) -> Optional[AuthComponent]:
    snippets = await asyncio.gather(*[
        extract_with_selector(page, provider_selector(provider), request_id, settings.selector_timeout)
        for provider in OAUTH_PROVIDERS
    ])

    found = [(provider, snippet) for provider, snippet in zip(OAUTH_PROVIDERS, snippets) if snippet]
    if not found:
        return None

    providers = [provider for provider, _ in found]
    log_event(request_id, "PATTERN_FOUND", type="oauth", providers=providers)
    return AuthComponent(
        type=AuthType.OAUTH,
        snippet=truncate_snippet(found[0][1], settings.snippet_max_length),
        details=AuthDetails(providers=providers, locator_hint=provider_selector(providers[0])),
    )


async def detect_with_patterns(url: str, page: Page, request_id: str, settings: Settings) -> DetectionResult:
    started = time.monotonic()
    log_event(request_id, "PATTERN_DETECTION_START", url=url)

    traditional, oauth = await asyncio.gather(
        detect_traditional_pattern(page, request_id, settings),
        detect_oauth_pattern(page, request_id, settings),
    )
    components = [c for c in (traditional, oauth) if c is not None]

    log_event(request_id, "PATTERN_DETECTION_COMPLETE",
              found=bool(components), componentCount=len(components), duration=elapsed_ms(started))
    return DetectionResult(
        success=True,
        url=url,
        components=components,
        detection_method=DetectionMethod.PATTERN,
    )
