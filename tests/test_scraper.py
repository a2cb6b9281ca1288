"""Tests for page acquisition and the live page handle."""

import pytest

from app.browser_pool import BrowserPool
from app.scraper import SHADOW_DOM_MARKER, HandleReleasedError, combine_html_sources, scrape_website
from fakes import FakeBrowser, FakePage, launcher_for, make_settings

URL = "https://example.com/login"


def pool_with(page: FakePage, settings) -> tuple[BrowserPool, FakeBrowser]:
    browser = FakeBrowser(page)
    return BrowserPool(settings, launcher=launcher_for(browser)), browser


class TestScrapeWebsite:

    @pytest.mark.asyncio
    async def test_success_returns_live_page(self, settings):
        page = FakePage(html="<html><body><form></form></body></html>", title="Sign in")
        pool, browser = pool_with(page, settings)

        outcome = await scrape_website(URL, "REQ-1", pool, settings)

        assert outcome.success is True
        assert outcome.error is None
        assert outcome.html.startswith("<html><body><form>")
        assert outcome.title == "Sign in"
        assert outcome.screenshot.startswith("data:image/jpeg;base64,")
        assert page.visited == URL
        assert outcome.live.page is page
        assert not page.closed
        assert not browser.contexts[0].closed

        await outcome.live.release()
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, settings):
        page = FakePage()
        pool, browser = pool_with(page, settings)
        outcome = await scrape_website(URL, "REQ-1", pool, settings)

        await outcome.live.release()
        await outcome.live.release()

        assert page.closed
        assert browser.contexts[0].closed
        assert outcome.live.released
        with pytest.raises(HandleReleasedError):
            outcome.live.page
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_navigation_failure_closes_everything(self, settings):
        page = FakePage(goto_error=RuntimeError("net::ERR_NAME_NOT_RESOLVED"))
        pool, browser = pool_with(page, settings)

        outcome = await scrape_website(URL, "REQ-1", pool, settings)

        assert outcome.success is False
        assert "ERR_NAME_NOT_RESOLVED" in outcome.error
        assert outcome.live is None
        assert page.closed
        assert browser.contexts[0].closed
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_total_timeout_closes_everything(self):
        settings = make_settings(scrape_total_timeout=50)
        page = FakePage(goto_delay=5)
        pool, browser = pool_with(page, settings)

        outcome = await scrape_website(URL, "REQ-1", pool, settings)

        assert outcome.success is False
        assert outcome.error == "Scraping timeout after 50ms"
        assert page.closed
        assert browser.contexts[0].closed
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_launch_failure_reported(self, settings):
        async def broken_launcher():
            raise RuntimeError("Executable doesn't exist")

        pool = BrowserPool(settings, launcher=broken_launcher)
        outcome = await scrape_website(URL, "REQ-1", pool, settings)

        assert outcome.success is False
        assert "Executable" in outcome.error

    @pytest.mark.asyncio
    async def test_screenshot_failure_is_not_fatal(self, settings):
        page = FakePage(screenshot_error=RuntimeError("Timeout 500ms exceeded"))
        pool, _ = pool_with(page, settings)

        outcome = await scrape_website(URL, "REQ-1", pool, settings)

        assert outcome.success is True
        assert outcome.screenshot is None
        await outcome.live.release()
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_collects_shadow_dom_and_accessibility(self, settings):
        page = FakePage(
            shadow_html='<input type="password">',
            aria='- main:\n  - textbox "Email"\n  - button "Log in"',
        )
        pool, _ = pool_with(page, settings)

        outcome = await scrape_website(URL, "REQ-1", pool, settings)

        assert SHADOW_DOM_MARKER in outcome.html
        assert outcome.html.endswith('<input type="password">')
        assert outcome.metadata.has_shadow_dom
        assert outcome.metadata.has_auth_accessibility_signals
        assert outcome.metadata.accessibility_signals == ["textbox: Email", "button: Log in"]
        assert outcome.metadata.modal_triggered is False
        await outcome.live.release()
        await pool.shutdown()


def test_combine_html_sources():
    assert combine_html_sources("<html></html>", "") == "<html></html>"
    assert combine_html_sources("<a></a>", "<b></b>") == f"<a></a>\n\n{SHADOW_DOM_MARKER}\n<b></b>"
