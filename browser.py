"""Playwright browser controller for the Pathfinder agent.

Executes one :class:`~agent_types.Action` at a time and exposes the page
signals the agent loop needs: screenshots, a distilled element list, a DOM
change summary and fault monitors (page errors, 5xx responses, console).
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Literal, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    async_playwright,
    TimeoutError as PlaywrightTimeout,
)

from agent_types import Action, ActionKind
from chaos import ChaosPolicy
from config import BrowserConfig
from exceptions import (
    ActionExecutionError,
    BrowserError,
    BrowserNotStartedError,
    ElementNotFoundError,
    ElementNotInteractableError,
    NavigationError,
    ScreenshotError,
)

BrowserType = Literal["chromium", "firefox", "webkit"]

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
)

# Ordered by priority; first visible one wins.
CONSENT_SELECTORS = [
    'button:has-text("Accept all")',
    'button:has-text("Accept All")',
    'button:has-text("Accept cookies")',
    'button:has-text("Accept")',
    'button:has-text("I agree")',
    'button:has-text("Agree")',
    'button:has-text("Allow all")',
    'button:has-text("Allow")',
    'button:has-text("OK")',
    'button:has-text("Got it")',
    "#onetrust-accept-btn-handler",
    "#accept-cookies",
    "#cookie-accept",
    '[data-testid="cookie-accept"]',
    ".accept-cookies-button",
    'button:has-text("Přijmout vše")',
    'button:has-text("Souhlasím")',
    'button:has-text("Alle akzeptieren")',
    'button:has-text("Akzeptieren")',
    'button:has-text("Aceptar todo")',
    'button:has-text("Aceptar")',
]

INTENT_PATTERNS: dict[str, list[str]] = {
    "submit": ["submit", "send", "go", "continue", "next", "done", "apply"],
    "login": ["login", "log in", "sign in", "signin"],
    "register": ["register", "sign up", "signup", "create account", "join"],
    "checkout": ["checkout", "check out", "proceed", "pay", "buy now", "purchase"],
    "add": ["add", "add to cart", "add to bag"],
    "confirm": ["confirm", "ok", "yes", "accept", "agree"],
    "cancel": ["cancel", "no", "close", "dismiss"],
    "save": ["save", "update", "apply changes"],
    "delete": ["delete", "remove", "trash"],
    "search": ["search", "find", "go"],
}

_ID_SPECIAL_CHARS = re.compile(r"[.:\[\]]")

DISTILL_SCRIPT = """() => {
    function isVisible(el) {
        const style = window.getComputedStyle(el);
        return style.display !== 'none'
            && style.visibility !== 'hidden'
            && style.opacity !== '0'
            && el.getBoundingClientRect().width > 0;
    }

    function collect(root) {
        const found = [];
        const walker = document.createTreeWalker(root || document, NodeFilter.SHOW_ELEMENT);
        let node = walker.nextNode();
        while (node) {
            const tag = node.tagName.toLowerCase();
            const role = node.getAttribute('role');
            const interactive = ['input', 'textarea', 'select', 'button', 'a'].includes(tag)
                || ['button', 'link', 'checkbox', 'menuitem'].includes(role)
                || node.hasAttribute('onclick');
            if (interactive && isVisible(node)) found.push(node);
            if (node.shadowRoot) found.push(...collect(node.shadowRoot));
            node = walker.nextNode();
        }
        return found;
    }

    const items = [];
    for (const el of collect(document)) {
        const rect = el.getBoundingClientRect();
        const cx = Math.round(rect.x + rect.width / 2);
        const cy = Math.round(rect.y + rect.height / 2);
        if (cy < 0 || cy > window.innerHeight) continue;

        const item = { t: el.tagName.toLowerCase(), c: [cx, cy] };
        const text = (el.textContent || '').trim() || el.value;
        if (text && text.length < 50) item.txt = text;
        if (el.id) item.id = el.id;
        const testId = el.getAttribute('data-test') || el.getAttribute('data-testid');
        if (testId) item.dt = testId;
        const label = el.getAttribute('aria-label') || el.getAttribute('placeholder') || el.getAttribute('name');
        if (label) item.l = label;
        items.push(item);
    }

    return JSON.stringify({
        items: items.slice(0, %d),
        meta: { count: items.length, w: window.innerWidth, h: window.innerHeight },
    });
}"""

DOM_SNAPSHOT_SCRIPT = """() => {
    const inputs = document.querySelectorAll('input, textarea, select');
    const buttons = document.querySelectorAll('button, input[type="submit"], [role="button"]');
    return {
        url: window.location.href,
        title: document.title,
        inputCount: inputs.length,
        buttonCount: buttons.length,
        visibleText: (document.body?.innerText || '').slice(0, 500),
    };
}"""


class BrowserController:
    """Browser session manager using Playwright, one session per agent run."""

    def __init__(
        self,
        browser_type: BrowserType = "chromium",
        headless: bool = True,
        viewport_width: int = 1280,
        viewport_height: int = 720,
        slow_mo: int = 0,
        record_video: bool = True,
        video_dir: str | Path = "./artifacts/videos",
        action_timeout_ms: int = 5000,
        max_retries: int = 3,
        max_context_items: int = 300,
        logger: Optional[logging.Logger] = None,
    ):
        self.browser_type = browser_type
        self.headless = headless
        self.viewport_width = viewport_width
        self.viewport_height = viewport_height
        self.slow_mo = slow_mo
        self.record_video = record_video
        self.video_dir = Path(video_dir)
        self.action_timeout_ms = action_timeout_ms
        self.max_retries = max_retries
        self.max_context_items = max_context_items
        self.logger = logger or logging.getLogger("pathfinder.browser")

        self._playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self.session_id: Optional[str] = None
        self.chaos: Optional[ChaosPolicy] = None

        self._console_messages: list[dict[str, Any]] = []
        self.page_errors: list[str] = []
        self.failed_requests: list[str] = []
        self._last_dom_snapshot: Optional[dict[str, Any]] = None

    @classmethod
    def from_config(cls, config: BrowserConfig, logger: Optional[logging.Logger] = None) -> "BrowserController":
        return cls(
            browser_type=config.browser,
            headless=config.headless,
            viewport_width=config.viewport_width,
            viewport_height=config.viewport_height,
            slow_mo=config.slow_mo,
            record_video=config.record_video,
            video_dir=config.video_dir,
            action_timeout_ms=config.action_timeout_ms,
            max_retries=config.max_retries,
            logger=logger,
        )

    def _ensure_started(self) -> None:
        """Raise if browser not started."""
        if self.page is None:
            raise BrowserNotStartedError()

    async def start(self, session_id: Optional[str] = None) -> None:
        """Launch the browser and open a fresh recording context."""
        self.session_id = session_id
        self._playwright = await async_playwright().start()

        browser_launcher = getattr(self._playwright, self.browser_type)
        launch_options: dict[str, Any] = {"headless": self.headless}
        if self.slow_mo > 0:
            launch_options["slow_mo"] = self.slow_mo
        if self.browser_type == "chromium":
            launch_options["args"] = ["--no-sandbox", "--disable-setuid-sandbox"]

        self.browser = await browser_launcher.launch(**launch_options)

        viewport = {"width": self.viewport_width, "height": self.viewport_height}
        context_options: dict[str, Any] = {"viewport": viewport, "user_agent": USER_AGENT}
        if self.record_video:
            self.video_dir.mkdir(parents=True, exist_ok=True)
            context_options["record_video_dir"] = str(self.video_dir)
            context_options["record_video_size"] = viewport

        self.context = await self.browser.new_context(**context_options)
        self.page = await self.context.new_page()
        self.page.set_default_timeout(60000)

        self.page.on("console", self._handle_console)
        self.page.on("pageerror", self._handle_page_error)
        self.page.on("response", self._handle_response)

        self.logger.info(
            f"Browser started: {self.browser_type} (headless={self.headless}, session={session_id})"
        )

    def _handle_console(self, msg: Any) -> None:
        """Capture console messages."""
        self._console_messages.append({"type": msg.type, "text": msg.text})
        # Keep only last 100 messages
        if len(self._console_messages) > 100:
            self._console_messages = self._console_messages[-100:]

    def _handle_page_error(self, error: Any) -> None:
        message = getattr(error, "message", None) or str(error)
        self.logger.warning(f"Page error: {message}")
        self.page_errors.append(message)

    def _handle_response(self, response: Any) -> None:
        if response.status >= 500:
            entry = f"{response.status} {response.url}"
            self.logger.warning(f"Server error response: {entry}")
            self.failed_requests.append(entry)

    @property
    def fault_count(self) -> int:
        """Page errors plus 5xx responses seen so far."""
        return len(self.page_errors) + len(self.failed_requests)

    def get_console_errors(self) -> list[str]:
        return [m["text"] for m in self._console_messages if m.get("type") == "error"]

    async def enable_chaos(self, policy: ChaosPolicy) -> None:
        """Route every request through the chaos policy."""
        self._ensure_started()
        self.chaos = policy
        await self.page.route("**/*", policy.handle_route)
        self.logger.info("Chaos network faults enabled")

    async def close(self) -> Optional[Path]:
        """Close the session; returns the recorded video path, if any."""
        video_path: Optional[Path] = None
        try:
            if self.page:
                video = self.page.video
                if video:
                    try:
                        video_path = Path(await video.path())
                    except PlaywrightError as e:
                        self.logger.warning(f"Could not resolve video path: {e}")
                await self.page.close()
            if self.context:
                await self.context.close()
            if self.browser:
                await self.browser.close()
        finally:
            if self._playwright:
                await self._playwright.stop()
            self.page = None
            self.context = None
            self.browser = None
            self._playwright = None
        self.logger.info("Browser closed")
        return video_path

    # ─────────────────────────────────────────────────────────────────────────
    # Navigation
    # ─────────────────────────────────────────────────────────────────────────

    async def goto(self, url: str, timeout: float = 30000) -> None:
        """Navigate, let the network settle, then dismiss consent modals."""
        self._ensure_started()
        try:
            await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout)
        except PlaywrightTimeout as e:
            raise NavigationError(f"Navigation timed out: {url}", url=url, timeout=timeout) from e
        except PlaywrightError as e:
            raise NavigationError(f"Navigation failed: {e}", url=url) from e

        try:
            await self.page.wait_for_load_state("networkidle", timeout=10000)
        except PlaywrightTimeout:
            self.logger.debug(f"Network did not go idle after loading {url}")

        await self.handle_consent_modals()

    async def handle_consent_modals(self) -> bool:
        """Click the first visible cookie-consent button. Returns True if one was clicked."""
        self._ensure_started()
        for selector in CONSENT_SELECTORS:
            try:
                button = self.page.locator(selector).first
                if await button.is_visible():
                    await button.click(timeout=2000)
                    await self.page.wait_for_timeout(500)
                    self.logger.info(f"Consent modal dismissed via {selector}")
                    return True
            except PlaywrightError:
                continue
        return False

    def get_url(self) -> str:
        """Get current URL."""
        self._ensure_started()
        return self.page.url

    # ─────────────────────────────────────────────────────────────────────────
    # Perception
    # ─────────────────────────────────────────────────────────────────────────

    async def screenshot(self) -> bytes:
        """Viewport screenshot as JPEG."""
        self._ensure_started()
        try:
            return await self.page.screenshot(type="jpeg", quality=80, full_page=False)
        except PlaywrightError as e:
            raise ScreenshotError(f"Screenshot failed: {e}") from e

    async def get_page_context(self) -> str:
        """Distilled interactive elements on screen, as compact JSON."""
        self._ensure_started()
        try:
            return await self.page.evaluate(DISTILL_SCRIPT % self.max_context_items)
        except PlaywrightError as e:
            self.logger.warning(f"Failed to distill DOM: {e}")
            return "{}"

    async def capture_dom_snapshot(self) -> dict[str, Any]:
        self._ensure_started()
        try:
            snapshot = await self.page.evaluate(DOM_SNAPSHOT_SCRIPT)
        except PlaywrightError as e:
            self.logger.warning(f"Failed to capture DOM snapshot: {e}")
            snapshot = {"url": "", "title": "", "inputCount": 0, "buttonCount": 0, "visibleText": ""}
        self._last_dom_snapshot = snapshot
        return snapshot

    async def get_dom_diff(self) -> str:
        """Summarise what changed since the previous snapshot."""
        previous = self._last_dom_snapshot
        current = await self.capture_dom_snapshot()
        if previous is None:
            return "First snapshot captured"
        return describe_dom_diff(previous, current)

    # ─────────────────────────────────────────────────────────────────────────
    # Element targeting
    # ─────────────────────────────────────────────────────────────────────────

    @staticmethod
    def escape_selector(selector: str) -> str:
        """Rewrite ``#id`` selectors whose id holds ``.``/``:``/brackets as attribute selectors."""
        if not selector or selector.startswith("["):
            return selector
        if selector.startswith("#") and _ID_SPECIAL_CHARS.search(selector[1:]):
            return f"[id='{selector[1:]}']"
        return selector

    async def find_element_by_heuristic(self, intent: str) -> Optional[str]:
        """Find a visible button-like element for a loose intent such as "login"."""
        self._ensure_started()
        normalized = intent.lower().strip()
        patterns: list[str] = []
        for key, values in INTENT_PATTERNS.items():
            if key in normalized:
                patterns.extend(values)
        if not patterns:
            patterns = [normalized]

        for pattern in patterns:
            selector = (
                f'button:has-text("{pattern}"), '
                f'input[type="submit"][value*="{pattern}" i], '
                f'[role="button"]:has-text("{pattern}")'
            )
            if await self._is_visible(selector):
                self.logger.info(f"Found element for intent '{intent}' by text '{pattern}'")
                return selector

        for pattern in patterns:
            selector = f'[aria-label*="{pattern}" i]'
            if await self._is_visible(selector):
                self.logger.info(f"Found element for intent '{intent}' by aria-label '{pattern}'")
                return selector

        self.logger.info(f"No element found for intent '{intent}'")
        return None

    async def _is_visible(self, selector: str) -> bool:
        try:
            return await self.page.locator(selector).first.is_visible()
        except PlaywrightError:
            return False

    # ─────────────────────────────────────────────────────────────────────────
    # Interaction primitives
    # ─────────────────────────────────────────────────────────────────────────

    async def click_at(self, x: int, y: int) -> None:
        self._ensure_started()
        await self.page.mouse.click(x, y)

    async def click_with_retry(self, selector: str, max_retries: Optional[int] = None) -> None:
        """Click a selector, scrolling between attempts."""
        self._ensure_started()
        attempts = max_retries or self.max_retries
        escaped = self.escape_selector(selector)

        for attempt in range(1, attempts + 1):
            try:
                await self.page.click(escaped, timeout=self.action_timeout_ms)
                return
            except PlaywrightError as e:
                self.logger.info(f"Click attempt {attempt}/{attempts} on {escaped} failed")
                if attempt == attempts:
                    raise ElementNotInteractableError(
                        f"Click failed after {attempts} attempts", selector=escaped, reason=str(e)
                    ) from e
                await self._scroll_toward(escaped)

    async def fill_with_retry(self, selector: str, text: str, max_retries: Optional[int] = None) -> None:
        """Fill a field and check the value stuck."""
        self._ensure_started()
        attempts = max_retries or self.max_retries
        escaped = self.escape_selector(selector)

        for attempt in range(1, attempts + 1):
            try:
                await self.page.fill(escaped, text, timeout=self.action_timeout_ms)
            except PlaywrightError as e:
                self.logger.info(f"Fill attempt {attempt}/{attempts} on {escaped} failed")
                if attempt == attempts:
                    raise ElementNotInteractableError(
                        f"Fill failed after {attempts} attempts", selector=escaped, reason=str(e)
                    ) from e
                await self._scroll_toward(escaped)
                continue

            try:
                value = await self.page.locator(escaped).first.input_value(timeout=1000)
            except PlaywrightError:
                # not an input element; nothing to compare
                return
            if value != text:
                self.logger.warning(f"Fill mismatch on {escaped}: expected {text[:20]!r}, got {value[:20]!r}")
            return

    async def _scroll_toward(self, selector: str) -> None:
        try:
            await self.page.evaluate("window.scrollBy(0, 300)")
            await self.page.wait_for_timeout(500)
            await self.page.locator(selector).first.scroll_into_view_if_needed(timeout=2000)
            await self.page.wait_for_timeout(300)
        except PlaywrightError:
            pass

    async def hover(self, action: Action) -> str:
        self._ensure_started()
        if action.selector:
            escaped = self.escape_selector(action.selector)
            locator = self.page.locator(escaped).first
            if not await self._is_visible(escaped):
                raise ElementNotFoundError("Hover target not visible", selector=escaped)
            await locator.hover(timeout=self.action_timeout_ms)
            await self.page.wait_for_timeout(300)
            return f"Hovered over {action.selector}"
        if action.coordinate:
            await self.page.mouse.move(*action.coordinate)
            await self.page.wait_for_timeout(300)
            return f"Hovered at {action.coordinate}"
        raise ActionExecutionError("Hover needs a selector or coordinate", action_kind="hover")

    async def press_key(self, key: str) -> None:
        self._ensure_started()
        await self.page.keyboard.press(key)
        await self.page.wait_for_timeout(500)

    async def scroll(self, action: Action) -> str:
        """Scroll to a selector, or the page by 300px (10000px when asked for the bottom)."""
        self._ensure_started()
        if action.selector and "document." not in action.selector:
            try:
                await self.page.locator(action.selector).first.scroll_into_view_if_needed(timeout=3000)
                await self.page.wait_for_timeout(300)
                return f"Scrolled to {action.selector}"
            except PlaywrightError:
                self.logger.info("Scroll to element failed, scrolling page instead")
                await self.page.evaluate("window.scrollBy(0, 500)")
                await self.page.wait_for_timeout(300)
                return "Scrolled page by 500px"

        amount = 10000 if "bottom" in (action.reason or "").lower() else 300
        can_scroll = await self.page.evaluate(
            "() => (window.innerHeight + window.scrollY) < document.body.scrollHeight"
        )
        await self.page.wait_for_timeout(300)
        if not can_scroll:
            return "Cannot scroll further, reached bottom of page"
        await self.page.evaluate(f"window.scrollBy(0, {amount})")
        return f"Scrolled page by {amount}px"

    async def rage_click(self, action: Action, count: int = 10) -> str:
        """Click the same target ``count`` times in quick succession."""
        self._ensure_started()
        if action.selector:
            escaped = self.escape_selector(action.selector)
            if not await self._is_visible(escaped):
                return f"Cannot rage click, element not visible: {action.selector}"
            locator = self.page.locator(escaped).first
            for _ in range(count):
                try:
                    await locator.click(delay=20, timeout=500, force=True)
                except PlaywrightError:
                    # element may detach mid-burst
                    continue
            return f"Rage clicked {action.selector} x{count}"
        if action.coordinate:
            for _ in range(count):
                await self.page.mouse.click(*action.coordinate, delay=20)
            return f"Rage clicked at {action.coordinate} x{count}"
        raise ActionExecutionError("Rage click needs a selector or coordinate", action_kind="rage_click")

    async def _settle_after_click(self) -> None:
        try:
            await self.page.wait_for_load_state("domcontentloaded", timeout=3000)
        except PlaywrightTimeout:
            pass
        await self.page.wait_for_timeout(500)

    # ─────────────────────────────────────────────────────────────────────────
    # Action dispatch
    # ─────────────────────────────────────────────────────────────────────────

    async def execute_action(self, action: Action) -> str:
        """Perform ``action`` and describe the outcome.

        Raises a :class:`~exceptions.BrowserError` subclass when the action
        could not be carried out.
        """
        self._ensure_started()
        self.logger.debug(f"Executing {action.describe()}")
        try:
            return await self._dispatch(action)
        except BrowserError:
            raise
        except PlaywrightError as e:
            raise ActionExecutionError(f"{action.kind.value} failed: {e}", action_kind=action.kind.value) from e

    async def _dispatch(self, action: Action) -> str:
        kind = action.kind

        if kind == ActionKind.CLICK:
            return await self._click(action)

        if kind == ActionKind.TYPE:
            if action.text is None:
                raise ActionExecutionError("Type action has no text", action_kind="type")
            if action.coordinate:
                await self.click_at(*action.coordinate)
                await self.page.wait_for_timeout(500)
                await self.page.keyboard.type(action.text)
                return f"Typed {len(action.text)} chars at {action.coordinate}"
            if action.selector:
                await self.fill_with_retry(action.selector, action.text)
                return f"Filled {action.selector}"
            self.logger.warning("Typing without selector or coordinate")
            await self.page.keyboard.type(action.text)
            return f"Typed {len(action.text)} chars into focused element"

        if kind == ActionKind.KEYPRESS:
            if not action.key:
                raise ActionExecutionError("Keypress action has no key", action_kind="keypress")
            await self.press_key(action.key)
            return f"Pressed {action.key}"

        if kind == ActionKind.SCROLL:
            return await self.scroll(action)

        if kind == ActionKind.HOVER:
            return await self.hover(action)

        if kind == ActionKind.WAIT:
            duration = action.duration or 2000
            await self.page.wait_for_timeout(duration)
            return f"Waited {duration}ms"

        if kind == ActionKind.NAVIGATE:
            if not action.text:
                raise ActionExecutionError("Navigate action has no URL", action_kind="navigate")
            await self.goto(action.text)
            return f"Navigated to {action.text}"

        if kind == ActionKind.RAGE_CLICK:
            count = self.chaos.rage_click_count if self.chaos else 10
            return await self.rage_click(action, count)

        # done / fail are decided by the agent loop
        return f"Concluded: {kind.value}"

    async def _click(self, action: Action) -> str:
        """Coordinate first, then selector, then intent; Enter if nothing worked."""
        outcome: Optional[str] = None

        if action.coordinate:
            try:
                await self.click_at(*action.coordinate)
                outcome = f"Clicked at {action.coordinate}"
            except PlaywrightError as e:
                self.logger.warning(f"Coordinate click failed: {e}")

        if outcome is None and action.selector:
            try:
                await self.click_with_retry(action.selector)
                outcome = f"Clicked {action.selector}"
            except ElementNotInteractableError as e:
                self.logger.warning(f"Selector click failed: {e}")

        if outcome is None and action.intent:
            selector = await self.find_element_by_heuristic(action.intent)
            if selector:
                try:
                    await self.click_with_retry(selector, max_retries=1)
                    outcome = f"Clicked element matching intent '{action.intent}'"
                except ElementNotInteractableError as e:
                    self.logger.warning(f"Intent click failed: {e}")

        if outcome is None:
            self.logger.info("Click failed, pressing Enter instead")
            await self.page.keyboard.press("Enter")
            outcome = "Click failed, pressed Enter instead"

        await self._settle_after_click()
        return outcome


def describe_dom_diff(previous: dict[str, Any], current: dict[str, Any]) -> str:
    """Human-readable change summary between two DOM snapshots."""
    changes: list[str] = []
    if previous.get("url") != current.get("url"):
        changes.append(f"URL: {previous.get('url')} -> {current.get('url')}")
    if previous.get("title") != current.get("title"):
        changes.append(f'Title: "{previous.get("title")}" -> "{current.get("title")}"')
    if previous.get("inputCount") != current.get("inputCount"):
        changes.append(f"Inputs: {previous.get('inputCount')} -> {current.get('inputCount')}")
    if previous.get("buttonCount") != current.get("buttonCount"):
        changes.append(f"Buttons: {previous.get('buttonCount')} -> {current.get('buttonCount')}")
    if (previous.get("visibleText") or "")[:100] != (current.get("visibleText") or "")[:100]:
        changes.append("Page content changed")
    return ", ".join(changes) if changes else "No changes detected"
