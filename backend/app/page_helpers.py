"""
Helpers for client-rendered pages: hydration wait, shadow DOM
serialization, and the accessibility-tree auth scan.
"""
import re

from playwright.async_api import Page

from app.config import Settings
from app.log_utils import log_event, log_warning

AUTH_ACCESSIBILITY_KEYWORDS = [
    "login", "signin", "sign in", "log in", "password",
    "email", "username", "register", "signup", "sign up",
]
AUTH_ACCESSIBILITY_ROLES = {"textbox", "button", "link"}

# One node per line in Playwright's aria snapshot:  - button "Sign in"
ARIA_NODE = re.compile(r'^\s*-\s*(?P<role>[a-z]+)(?:\s+"(?P<name>(?:[^"\\]|\\.)*)")?[^:]*(?::\s*(?P<value>.*))?$')


async def wait_for_modern_web_app(page: Page, request_id: str, settings: Settings) -> bool:
    """
    Give React/Vue/Angular apps a chance to hydrate. Returns whether
    network idle was reached.

    Some pages poll forever and never go idle; those get a longer settle
    delay instead.
    """
    log_event(request_id, "MODERN_WEB_WAIT_START", timeout=f"{settings.network_idle_timeout}ms")

    reached_idle = False
    try:
        await page.wait_for_load_state("networkidle", timeout=settings.network_idle_timeout)
        reached_idle = True
        log_event(request_id, "MODERN_WEB_WAIT_NETWORK_IDLE", message="Network idle achieved")
    except Exception:
        log_warning(request_id, "MODERN_WEB_WAIT_TIMEOUT", "Network idle timeout, continuing")

    settle = settings.settle_delay_idle if reached_idle else settings.settle_delay_busy
    await page.wait_for_timeout(settle)

    log_event(request_id, "MODERN_WEB_WAIT_COMPLETE", additionalWait=f"{settle}ms")
    return reached_idle


async def extract_shadow_dom_content(page: Page, request_id: str) -> str:
    """innerHTML of every open shadow root on the page, newline separated."""
    try:
        shadow_html = await page.evaluate('''() => {
            let content = '';
            document.querySelectorAll('*').forEach(el => {
                if (el.shadowRoot) {
                    content += el.shadowRoot.innerHTML + '\\n';
                }
            });
            return content;
        }''')
    except Exception as e:
        log_warning(request_id, "SHADOW_DOM_EXTRACTION_FAILED", "Shadow DOM read failed", error=str(e))
        return ""

    if shadow_html:
        log_event(request_id, "SHADOW_DOM_EXTRACTION_SUCCESS", size=f"{round(len(shadow_html) / 1024)}KB")
    else:
        log_event(request_id, "SHADOW_DOM_EXTRACTION_EMPTY")
    return shadow_html or ""


def parse_accessibility_signals(aria_snapshot: str) -> list[str]:
    """
    Pick auth-looking textboxes, buttons and links out of an aria snapshot.
    Each signal is ``"role: accessible name"``.
    """
    signals = []
    for line in aria_snapshot.splitlines():
        match = ARIA_NODE.match(line)
        if not match:
            continue
        role = match.group("role").lower()
        if role not in AUTH_ACCESSIBILITY_ROLES:
            continue
        name = (match.group("name") or "").strip()
        value = (match.group("value") or "").strip().strip('"')
        haystack = f"{name} {value}".lower()
        if any(keyword in haystack for keyword in AUTH_ACCESSIBILITY_KEYWORDS):
            signals.append(f"{role}: {name or value}")
    return signals


async def get_accessibility_auth_signals(page: Page, request_id: str) -> tuple[bool, list[str]]:
    """Returns (has_auth, signals). Failures count as no signals."""
    try:
        snapshot = await page.locator("body").aria_snapshot()
    except Exception as e:
        log_warning(request_id, "A11Y_AUTH_CHECK_FAILED", "Failed to read accessibility tree", error=str(e))
        return False, []

    signals = parse_accessibility_signals(snapshot or "")
    if signals:
        log_event(request_id, "A11Y_AUTH_SIGNALS_FOUND", count=len(signals), signals=signals[:5])
    else:
        log_event(request_id, "A11Y_AUTH_SIGNALS_NONE")
    return bool(signals), signals
