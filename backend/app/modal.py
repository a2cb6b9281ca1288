"""
Reveal auth UI hidden behind a "Sign in" button.

Many sites only render the login form after a click opens a modal. We click
the most likely trigger, check whether a dialog became visible, and stop at
the first one that works. The whole thing is time-boxed; failing to open a
modal is normal and never an error.
"""
from dataclasses import dataclass

from playwright.async_api import Page

from app.config import Settings
from app.deadline import Deadline
from app.log_utils import log_event


@dataclass(frozen=True)
class ModalTrigger:
    selector: str
    name: str


# Most common patterns first
AUTH_TRIGGERS = [
    ModalTrigger('button:has-text("Sign in")', "Sign in button"),
    ModalTrigger('button:has-text("Log in")', "Log in button"),
    ModalTrigger('button:has-text("Login")', "Login button"),
    ModalTrigger('a:has-text("Sign in")', "Sign in link"),
    ModalTrigger('a:has-text("Log in")', "Log in link"),
    ModalTrigger('a:has-text("Login")', "Login link"),
    ModalTrigger('[data-testid*="login"]', "Login testid"),
    ModalTrigger('[data-testid*="signin"]', "Signin testid"),
    ModalTrigger('[aria-label*="login" i]', "Login aria-label"),
    ModalTrigger('[aria-label*="sign in" i]', "Sign in aria-label"),
    ModalTrigger(".login-button", "Login class"),
    ModalTrigger(".signin-button", "Signin class"),
    ModalTrigger(".auth-button", "Auth class"),
    ModalTrigger(".sign-in-btn", "Sign in btn class"),
]

VISIBLE_MODAL_SCRIPT = '''() => {
    const modals = document.querySelectorAll(
        '[role="dialog"], [role="alertdialog"], .modal, [class*="modal" i], ' +
        '[class*="dialog" i], [aria-modal="true"]'
    );
    return Array.from(modals).some(el => el.offsetParent !== null);
}'''


async def _try_trigger(page: Page, trigger: ModalTrigger, request_id: str, settings: Settings) -> bool:
    element = await page.query_selector(trigger.selector)
    if element is None:
        return False

    log_event(request_id, "AUTH_TRIGGER_FOUND", selector=trigger.selector, name=trigger.name)
    await element.click(timeout=settings.modal_click_timeout)
    await page.wait_for_timeout(settings.modal_settle_delay)
    return bool(await page.evaluate(VISIBLE_MODAL_SCRIPT))


async def reveal_auth_modal(page: Page, request_id: str, settings: Settings) -> bool:
    """Returns True if clicking a trigger left a visible modal on the page."""
    log_event(request_id, "AUTH_MODAL_TRIGGER_START", budget=f"{settings.modal_budget}ms")
    deadline = Deadline(settings.modal_budget)

    for trigger in AUTH_TRIGGERS:
        if deadline.expired:
            log_event(request_id, "AUTH_MODAL_TRIGGER_TIMEOUT",
                      message="Max attempt time reached, continuing without modal",
                      timeSpent=f"{deadline.elapsed_ms}ms")
            return False

        try:
            revealed = await deadline.run(_try_trigger(page, trigger, request_id, settings))
        except Exception:
            # Timed out, or Playwright refused the click
            continue

        if revealed:
            log_event(request_id, "AUTH_MODAL_REVEALED",
                      trigger=trigger.name,
                      selector=trigger.selector,
                      totalTime=f"{deadline.elapsed_ms}ms")
            return True

    log_event(request_id, "AUTH_MODAL_TRIGGER_COMPLETE",
              modalRevealed=False, totalTime=f"{deadline.elapsed_ms}ms")
    return False
