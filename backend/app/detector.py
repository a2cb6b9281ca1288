"""
Authentication detection.

1. AI detection (primary): Gemini looks at the screenshot and a trimmed
   copy of the HTML and proposes components plus a locator for each. The
   locators are resolved against the live page to get the real markup.
2. Pattern detection (fallback): used when no API key is configured or
   anything on the AI path fails. The request never fails because of the AI.
"""

import asyncio
import time

from playwright.async_api import Page

from app.ai_detector import build_content_parts, build_prompt, parse_ai_response, request_model_text
from app.config import Settings
from app.fallback import extract_with_selector, fallback_extraction
from app.log_utils import elapsed_ms, log_error, log_event, log_warning
from app.models import AuthComponent, DetectionMethod, DetectionResult
from app.pattern_detector import detect_with_patterns
from app.relevance import extract_relevant_html
from app.snippet import truncate_snippet


async def detect_authentication(html: str, url: str, screenshot, page: Page,
                                request_id: str, settings: Settings) -> DetectionResult:
    started = time.monotonic()
    has_key = bool(settings.gemini_api_key)

    log_event(request_id, "DETECTION_START",
              url=url,
              htmlSize=f"{round(len(html) / 1024)}KB",
              hasApiKey=has_key,
              hasScreenshot=screenshot is not None)

    if has_key:
        try:
            result = await detect_with_ai(html, url, screenshot, page, request_id, settings)
            log_event(request_id, "DETECTION_COMPLETE",
                      method="ai", found=result.found, componentCount=len(result.components),
                      duration=elapsed_ms(started))
            return result
        except asyncio.TimeoutError:
            log_error(request_id, "DETECTION_AI_FAILED", f"AI API timeout after {settings.ai_timeout}ms",
                      fallback="pattern-matching")
        except Exception as e:
            log_error(request_id, "DETECTION_AI_FAILED", e, fallback="pattern-matching")

    result = await detect_with_patterns(url, page, request_id, settings)
    log_event(request_id, "DETECTION_COMPLETE",
              method="pattern", found=result.found, componentCount=len(result.components),
              duration=elapsed_ms(started))
    return result


# ============================================================
# AI path
# ============================================================

async def detect_with_ai(html: str, url: str, screenshot, page: Page,
                         request_id: str, settings: Settings) -> DetectionResult:
    started = time.monotonic()
    log_event(request_id, "AI_DETECTION_START",
              model=settings.gemini_model, hasScreenshot=screenshot is not None,
              timeout=f"{settings.ai_timeout}ms")

    relevant_html = extract_relevant_html(html, request_id,
                                          max_size=settings.relevant_html_max_size,
                                          min_size=settings.relevant_html_min_size)
    prompt = build_prompt(url, relevant_html, screenshot is not None)
    parts = build_content_parts(screenshot, prompt)

    log_event(request_id, "AI_API_CALL_START", promptLength=len(prompt), htmlLength=len(relevant_html))
    response_text = await asyncio.wait_for(
        request_model_text(parts, settings),
        timeout=settings.ai_timeout / 1000,
    )
    log_event(request_id, "AI_API_CALL_SUCCESS", responseLength=len(response_text), duration=elapsed_ms(started))

    parsed = parse_ai_response(response_text, request_id)
    if parsed.components:
        log_event(request_id, "AI_COMPONENTS_FOUND",
                  count=len(parsed.components),
                  types=[c.type.value for c in parsed.components])

    components = await extract_snippets_with_timeout(parsed.components, page, request_id, settings)

    log_event(request_id, "AI_DETECTION_SUCCESS", componentCount=len(components), duration=elapsed_ms(started))
    return DetectionResult(
        success=True,
        url=url,
        components=components,
        detection_method=DetectionMethod.AI,
    )


# ============================================================
# Live-DOM snippet resolution
# ============================================================

async def extract_snippets_with_timeout(components: list[AuthComponent], page: Page,
                                        request_id: str, settings: Settings) -> list[AuthComponent]:
    """
    Resolve every component's snippet concurrently. If the batch outlives
    ``extraction_timeout`` it is cancelled and every component keeps its
    detection with a placeholder snippet instead.
    """
    if not components:
        return []

    log_event(request_id, "PLAYWRIGHT_EXTRACTION_START",
              componentCount=len(components), timeout=f"{settings.extraction_timeout}ms")
    try:
        resolved = await asyncio.wait_for(
            asyncio.gather(*[extract_component_snippet(c, page, request_id, settings) for c in components]),
            timeout=settings.extraction_timeout / 1000,
        )
    except asyncio.TimeoutError:
        log_warning(request_id, "EXTRACTION_TIMEOUT", "Returning placeholder snippets")
        return [
            c.model_copy(update={"snippet": f"<!-- {c.type.value} detected but extraction timed out -->"})
            for c in components
        ]

    log_event(request_id, "PLAYWRIGHT_EXTRACTION_COMPLETE",
              componentCount=len(resolved),
              successCount=sum(1 for c in resolved if c.snippet and not c.snippet.startswith("<!--")))
    return list(resolved)


async def extract_component_snippet(component: AuthComponent, page: Page,
                                    request_id: str, settings: Settings) -> AuthComponent:
    kind = component.type.value
    selector = component.details.locator_hint

    if not selector:
        log_warning(request_id, "PLAYWRIGHT_EXTRACTION_NO_SELECTOR", "Component missing locator", type=kind)
        return component.model_copy(update={"snippet": f"<!-- {kind} auth detected but no locator provided -->"})

    try:
        log_event(request_id, "PLAYWRIGHT_EXTRACTION_ATTEMPT", type=kind, selector=selector)
        snippet = await extract_with_selector(page, selector, request_id, settings.selector_timeout)

        if snippet:
            log_event(request_id, "PLAYWRIGHT_EXTRACTION_SUCCESS", type=kind, snippetLength=len(snippet))
            return component.model_copy(update={"snippet": truncate_snippet(snippet, settings.snippet_max_length)})

        log_warning(request_id, "PLAYWRIGHT_EXTRACTION_SELECTOR_FAILED", "Trying fallback", type=kind)
        fallback_snippet = await fallback_extraction(page, component.type, component.details, request_id, settings)
        return component.model_copy(update={"snippet": fallback_snippet})
    except Exception as e:
        log_error(request_id, "PLAYWRIGHT_EXTRACTION_ERROR", e, type=kind, selector=selector)
        return component.model_copy(update={"snippet": f"<!-- {kind} auth detected (extraction failed) -->"})
