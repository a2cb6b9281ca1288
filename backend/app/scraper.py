"""
Page acquisition for auth detection.

Opens the URL in a pooled browser context, waits for client-side rendering
to settle, then pulls HTML from every source we know about (regular DOM,
shadow DOM, accessibility tree, auth modals) alongside a viewport screenshot.

On success the page is left OPEN: the detector resolves AI-generated
locators against the live DOM. The page and its context travel inside a
LivePage and whoever holds the ScrapeOutcome must call ``release()`` on it.
Every failure path closes both before returning.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional

from playwright.async_api import BrowserContext, Page

from app.browser_pool import BrowserPool
from app.config import Settings
from app.image_utils import screenshot_to_data_url
from app.log_utils import elapsed_ms, log_error, log_event, log_warning
from app.modal import reveal_auth_modal
from app.page_helpers import (
    extract_shadow_dom_content,
    get_accessibility_auth_signals,
    wait_for_modern_web_app,
)

SHADOW_DOM_MARKER = "<!-- SHADOW DOM CONTENT -->"


class HandleReleasedError(RuntimeError):
    pass


class LivePage:
    """
    An open page plus the context it lives in, owned by exactly one caller.

    ``page`` hands out the Playwright page while the handle is live;
    ``release()`` closes the page and then the context (each attempted even
    if the other fails) and can safely be called more than once.
    """

    def __init__(self, page: Page, context: BrowserContext, pool: BrowserPool, request_id: str):
        self._page = page
        self._context = context
        self._pool = pool
        self._request_id = request_id
        self._released = False

    @property
    def page(self) -> Page:
        if self._released:
            raise HandleReleasedError("page was already released")
        return self._page

    @property
    def released(self) -> bool:
        return self._released

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        await _close_page(self._page, self._request_id)
        await self._pool.release_context(self._context, self._request_id)


@dataclass
class ScrapeMetadata:
    has_shadow_dom: bool = False
    modal_triggered: bool = False
    has_auth_accessibility_signals: bool = False
    accessibility_signals: list[str] = field(default_factory=list)


@dataclass
class ScrapeOutcome:
    success: bool
    url: str
    html: str = ""
    title: str = ""
    screenshot: Optional[str] = None
    live: Optional[LivePage] = None
    metadata: ScrapeMetadata = field(default_factory=ScrapeMetadata)
    error: Optional[str] = None


@dataclass
class _Handles:
    """What has been opened so far, so any exit path can close it."""
    context: Optional[BrowserContext] = None
    page: Optional[Page] = None


# ============================================================
# Entry point
# ============================================================

async def scrape_website(url: str, request_id: str, pool: BrowserPool, settings: Settings) -> ScrapeOutcome:
    """
    Navigate to ``url`` and extract everything the detector needs.

    The whole operation is bounded by ``scrape_total_timeout``; hitting it
    cancels whatever step is in flight and cleans up.
    """
    started = time.monotonic()
    handles = _Handles()

    log_event(request_id, "SCRAPE_START",
              url=url,
              navigationTimeout=f"{settings.navigation_timeout}ms",
              totalTimeout=f"{settings.scrape_total_timeout}ms")

    try:
        return await asyncio.wait_for(
            _perform_scrape(url, request_id, pool, settings, handles, started),
            timeout=settings.scrape_total_timeout / 1000,
        )
    except asyncio.TimeoutError:
        error = f"Scraping timeout after {settings.scrape_total_timeout}ms"
    except Exception as e:
        error = _error_message(e)

    log_error(request_id, "SCRAPE_FAILED", error, url=url, duration=elapsed_ms(started))
    await _cleanup(handles, pool, request_id)
    return ScrapeOutcome(success=False, url=url, error=error)


async def _perform_scrape(url: str, request_id: str, pool: BrowserPool, settings: Settings,
                          handles: _Handles, started: float) -> ScrapeOutcome:
    try:
        handles.context = await pool.acquire_context(request_id)
        handles.page = await handles.context.new_page()
        page = handles.page

        log_event(request_id, "SCRAPE_NAVIGATE_START", url=url, timeout=f"{settings.navigation_timeout}ms")
        await page.goto(url, wait_until="domcontentloaded", timeout=settings.navigation_timeout)
        log_event(request_id, "SCRAPE_NAVIGATE_SUCCESS", url=url)

        await wait_for_modern_web_app(page, request_id, settings)

        content, screenshot = await asyncio.gather(
            _extract_all_content(page, request_id, settings),
            _capture_screenshot(page, request_id, settings),
        )
    except Exception as e:
        log_error(request_id, "SCRAPE_ERROR", e, url=url, duration=elapsed_ms(started))
        await _cleanup(handles, pool, request_id)
        return ScrapeOutcome(success=False, url=url, error=_error_message(e))

    html, title, metadata = content
    log_event(request_id, "SCRAPE_SUCCESS",
              url=url,
              htmlSize=f"{round(len(html) / 1024)}KB",
              hasScreenshot=screenshot is not None,
              hasShadowDOM=metadata.has_shadow_dom,
              modalTriggered=metadata.modal_triggered,
              hasAuthInA11y=metadata.has_auth_accessibility_signals,
              title=title,
              duration=elapsed_ms(started))

    live = LivePage(handles.page, handles.context, pool, request_id)
    return ScrapeOutcome(
        success=True,
        url=url,
        html=html,
        title=title,
        screenshot=screenshot,
        live=live,
        metadata=metadata,
    )


# ============================================================
# Content extraction
# ============================================================

def combine_html_sources(regular_html: str, shadow_html: str) -> str:
    if not shadow_html:
        return regular_html
    return f"{regular_html}\n\n{SHADOW_DOM_MARKER}\n{shadow_html}"


async def _extract_all_content(page: Page, request_id: str, settings: Settings):
    """Regular DOM, shadow DOM, accessibility signals, modal reveal and title, all at once."""
    log_event(request_id, "SCRAPE_EXTRACT_CONTENT", message="Extracting HTML from multiple sources")

    modal_triggered, regular_html, shadow_html, (has_a11y_auth, a11y_signals), title = await asyncio.gather(
        reveal_auth_modal(page, request_id, settings),
        page.content(),
        extract_shadow_dom_content(page, request_id),
        get_accessibility_auth_signals(page, request_id),
        page.title(),
    )

    html = combine_html_sources(regular_html, shadow_html)
    metadata = ScrapeMetadata(
        has_shadow_dom=bool(shadow_html),
        modal_triggered=modal_triggered,
        has_auth_accessibility_signals=has_a11y_auth,
        accessibility_signals=a11y_signals,
    )

    log_event(request_id, "SCRAPE_CONTENT_EXTRACTED",
              regularHTMLSize=f"{round(len(regular_html) / 1024)}KB",
              shadowHTMLSize=f"{round(len(shadow_html) / 1024)}KB",
              totalHTMLSize=f"{round(len(html) / 1024)}KB",
              title=title[:100])
    return html, title, metadata


async def _capture_screenshot(page: Page, request_id: str, settings: Settings) -> Optional[str]:
    """Viewport JPEG as a data URL, or None. Never raises."""
    try:
        log_event(request_id, "SCRAPE_SCREENSHOT_START",
                  quality=f"{settings.screenshot_quality}%",
                  timeout=f"{settings.screenshot_timeout}ms")
        raw = await asyncio.wait_for(
            page.screenshot(
                type="jpeg",
                quality=settings.screenshot_quality,
                full_page=False,
                timeout=settings.screenshot_timeout,
            ),
            timeout=settings.screenshot_timeout / 1000,
        )
        data_url = screenshot_to_data_url(raw, max_width=settings.screenshot_max_width,
                                          quality=settings.screenshot_quality)
        log_event(request_id, "SCRAPE_SCREENSHOT_SUCCESS", size=f"{round(len(data_url) / 1024)}KB")
        return data_url
    except Exception as e:
        log_warning(request_id, "SCRAPE_SCREENSHOT_FAILED",
                    "Screenshot capture failed, continuing without it",
                    error=_error_message(e))
        return None


# ============================================================
# Cleanup
# ============================================================

async def _close_page(page: Page, request_id: str):
    try:
        await page.close()
    except Exception as e:
        log_warning(request_id, "CLEANUP_PAGE_FAILED", "Failed to close page", error=_error_message(e))


async def _cleanup(handles: _Handles, pool: BrowserPool, request_id: str):
    page, handles.page = handles.page, None
    context, handles.context = handles.context, None
    if page is not None:
        await _close_page(page, request_id)
    if context is not None:
        await pool.release_context(context, request_id)


def _error_message(error: Exception) -> str:
    if isinstance(error, asyncio.TimeoutError) and not str(error):
        return "Operation timed out"
    return str(error) or type(error).__name__
