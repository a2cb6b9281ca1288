"""
Keeps one Chromium process alive across requests and hands out an isolated
BrowserContext per request (own cookies, storage and cache).

Launching Chromium costs 2-3s; a new context on a warm browser is ~200ms.
The browser is launched lazily on first use, shared by everyone who asks
while the launch is in flight, and closed again after a period of
inactivity. The next request relaunches it transparently.
"""
import asyncio
import time
from typing import Awaitable, Callable, Optional

from playwright.async_api import Browser, BrowserContext, Route, async_playwright

from app.config import Settings
from app.log_utils import SYSTEM, elapsed_ms, log_error, log_event

LAUNCH_ARGS = [
    "--disable-dev-shm-usage",  # /dev/shm is tiny in containers
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-gpu",
]

# Auth detection needs markup and scripts, not pixels
BLOCKED_RESOURCE_TYPES = {"image", "font", "media"}


async def block_heavy_resources(route: Route):
    """Abort image/font/media requests, let everything else through."""
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


class BrowserPool:
    def __init__(self, settings: Settings,
                 launcher: Optional[Callable[[], Awaitable[Browser]]] = None):
        self.settings = settings
        self._launcher = launcher or self._launch_chromium
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._init_task: Optional[asyncio.Task] = None
        self._last_used = time.monotonic()
        self._idle_task: Optional[asyncio.Task] = None
        self.launch_count = 0

    # -----------------------------------------------------------------
    # Browser lifecycle
    # -----------------------------------------------------------------

    async def _launch_chromium(self) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(headless=True, args=LAUNCH_ARGS)

    async def _launch(self, request_id: str) -> Browser:
        started = time.monotonic()
        log_event(request_id, "BROWSER_POOL_INIT_START", message="Launching new browser instance")
        try:
            browser = await self._launcher()
        except Exception as e:
            log_error(request_id, "BROWSER_POOL_INIT_ERROR", e, message="Failed to launch browser")
            raise
        finally:
            self._init_task = None

        self.launch_count += 1
        self._browser = browser
        self._last_used = time.monotonic()
        self._start_idle_monitor()
        log_event(request_id, "BROWSER_POOL_INIT_SUCCESS", duration=elapsed_ms(started))
        return browser

    async def _get_browser(self, request_id: str) -> Browser:
        if self._browser is not None and self._browser.is_connected():
            self._last_used = time.monotonic()
            return self._browser

        if self._init_task is None:
            self._browser = None
            self._init_task = asyncio.create_task(self._launch(request_id))
        else:
            log_event(request_id, "BROWSER_POOL_WAITING",
                      message="Waiting for browser initialization to complete")

        # shield: a caller timing out must not cancel the launch everyone shares
        return await asyncio.shield(self._init_task)

    # -----------------------------------------------------------------
    # Contexts
    # -----------------------------------------------------------------

    async def acquire_context(self, request_id: str) -> BrowserContext:
        browser = await self._get_browser(request_id)
        log_event(request_id, "BROWSER_CONTEXT_CREATE", message="Creating new browser context")

        context = await browser.new_context(
            user_agent=self.settings.user_agent,
            viewport={"width": self.settings.viewport_width, "height": self.settings.viewport_height},
            timezone_id=self.settings.timezone_id,
            java_script_enabled=True,
        )
        try:
            await context.route("**/*", block_heavy_resources)
        except BaseException:
            # includes cancellation from the caller's scrape timeout
            await self.release_context(context, request_id)
            raise
        self._last_used = time.monotonic()
        return context

    async def release_context(self, context: BrowserContext, request_id: str) -> None:
        try:
            await context.close()
            log_event(request_id, "BROWSER_CONTEXT_CLOSED")
        except Exception as e:
            # Orphaned contexts die with the browser process anyway
            log_error(request_id, "BROWSER_CONTEXT_CLOSE_ERROR", e)

    # -----------------------------------------------------------------
    # Idle monitoring
    # -----------------------------------------------------------------

    def _start_idle_monitor(self):
        if self._idle_task is not None and not self._idle_task.done():
            return
        self._idle_task = asyncio.create_task(self._idle_loop())

    async def _idle_loop(self):
        while True:
            await asyncio.sleep(self.settings.browser_idle_check_interval)
            idle = time.monotonic() - self._last_used
            if self._browser is not None and idle > self.settings.browser_idle_timeout:
                log_event(SYSTEM, "BROWSER_POOL_IDLE_TIMEOUT",
                          message="Closing browser due to inactivity",
                          idleTime=f"{round(idle)}s")
                await self._close_browser(SYSTEM)
                return

    async def _close_browser(self, request_id: str):
        browser, self._browser = self._browser, None
        if browser is None:
            return
        try:
            await browser.close()
            log_event(request_id, "BROWSER_POOL_CLOSED", message="Browser closed successfully")
        except Exception as e:
            log_error(request_id, "BROWSER_POOL_CLOSE_ERROR", e)

    async def shutdown(self, request_id: str = SYSTEM):
        """Stop the idle monitor, close the browser and the Playwright driver."""
        if self._idle_task is not None and self._idle_task is not asyncio.current_task():
            self._idle_task.cancel()
            try:
                await self._idle_task
            except asyncio.CancelledError:
                pass
        self._idle_task = None

        init_task, self._init_task = self._init_task, None
        if init_task is not None and not init_task.done():
            init_task.cancel()
            try:
                await init_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                log_error(request_id, "BROWSER_POOL_INIT_ERROR", e)

        await self._close_browser(request_id)

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                log_error(request_id, "PLAYWRIGHT_STOP_ERROR", e)
            self._playwright = None

    # -----------------------------------------------------------------
    # Health
    # -----------------------------------------------------------------

    def is_healthy(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    def health_check(self) -> dict:
        return {
            "healthy": self.is_healthy(),
            "idleTime": int((time.monotonic() - self._last_used) * 1000),
            "initializing": self._init_task is not None,
        }
