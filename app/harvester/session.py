"""Browser session abstraction and its Playwright implementation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from playwright.async_api import Browser, BrowserContext, Page, Playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from . import config
from .models import ProxyEndpoint
from .proxy_pool import ProxyPool, to_playwright_proxy
from .utils import log_line

# Hides the usual automation fingerprints before any page script runs.
STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
window.chrome = window.chrome || { runtime: {} };
"""


@dataclass(frozen=True)
class AntiDetectionProfile:
    viewport: Dict[str, int] = field(default_factory=lambda: {"width": 1920, "height": 1080})
    user_agent: str = config.USER_AGENT
    extra_headers: Dict[str, str] = field(default_factory=lambda: dict(config.COMMON_HEADERS))
    locale: str = "en-US"
    init_script: str = STEALTH_INIT_SCRIPT


DEFAULT_PROFILE = AntiDetectionProfile()


@dataclass
class NavResponse:
    status: Optional[int]
    url: str = ""


class BrowserSession(Protocol):
    """What the engine needs from one browser tab."""

    proxy: Optional[ProxyEndpoint]

    @property
    def url(self) -> str: ...

    async def navigate(self, url: str, *, timeout_ms: int) -> NavResponse:
        """Load ``url``; raise on transport failure, return the main response."""

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def wait_for(self, condition: str, *, timeout_ms: int, kind: str = "selector") -> bool:
        """Wait for a selector or a JS predicate; ``False`` on timeout."""

    async def click(self, element_ref: str) -> None: ...

    async def close(self) -> None: ...


ResponseHandler = Callable[[Any], Awaitable[None]]


class PlaywrightSession:
    def __init__(
        self, context: BrowserContext, page: Page, proxy: Optional[ProxyEndpoint] = None
    ) -> None:
        self._context = context
        self._page = page
        self.proxy = proxy

    @property
    def url(self) -> str:
        return self._page.url

    async def navigate(self, url: str, *, timeout_ms: int) -> NavResponse:
        response = await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        if response is None:
            return NavResponse(status=None, url=self._page.url)
        return NavResponse(status=response.status, url=response.url)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if arg is None:
            return await self._page.evaluate(script)
        return await self._page.evaluate(script, arg)

    async def wait_for(self, condition: str, *, timeout_ms: int, kind: str = "selector") -> bool:
        try:
            if kind == "function":
                await self._page.wait_for_function(condition, timeout=timeout_ms)
            else:
                await self._page.wait_for_selector(condition, state="attached", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            return False
        return True

    async def click(self, element_ref: str) -> None:
        locator = self._page.locator(element_ref).first
        await locator.scroll_into_view_if_needed(timeout=config.NAV_TIMEOUT_SECONDS * 1000)
        await self._page.wait_for_timeout(config.SCROLL_INTO_VIEW_DELAY_MS)
        await locator.click(timeout=config.NAV_TIMEOUT_SECONDS * 1000)

    async def close(self) -> None:
        await self._context.close()


class PlaywrightBrowser:
    """Owns the Playwright driver and hands out one context per session.

    Each session gets its own context so the proxy chosen from the pool applies
    to that session only.
    """

    def __init__(self, *, headless: bool = config.HEADLESS, proxy_pool: Optional[ProxyPool] = None):
        self._headless = headless
        self._proxy_pool = proxy_pool
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def start(self) -> None:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self._headless, args=list(config.BROWSER_ARGS)
        )
        log_line(f"[BROWSER] Chromium launched (headless={self._headless})")

    async def open_session(
        self,
        profile: AntiDetectionProfile = DEFAULT_PROFILE,
        *,
        on_response: Optional[ResponseHandler] = None,
    ) -> PlaywrightSession:
        if self._browser is None:
            raise RuntimeError("browser not started")

        proxy = self._proxy_pool.next() if self._proxy_pool is not None else None
        context_kwargs: Dict[str, Any] = {
            "viewport": dict(profile.viewport),
            "user_agent": profile.user_agent,
            "extra_http_headers": dict(profile.extra_headers),
            "locale": profile.locale,
        }
        if proxy is not None:
            context_kwargs["proxy"] = to_playwright_proxy(proxy)

        context = await self._browser.new_context(**context_kwargs)
        await context.add_init_script(profile.init_script)
        page = await context.new_page()
        page.set_default_timeout(config.NAV_TIMEOUT_SECONDS * 1000)
        if on_response is not None:
            page.on("response", on_response)
        return PlaywrightSession(context, page, proxy)

    async def close(self) -> None:
        try:
            if self._browser is not None:
                await self._browser.close()
        except Exception as exc:  # noqa: BLE001
            log_line(f"[BROWSER] Error closing browser: {exc}")
        finally:
            self._browser = None
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as exc:  # noqa: BLE001
                log_line(f"[BROWSER] Error stopping Playwright: {exc}")
            finally:
                self._playwright = None


__all__ = [
    "AntiDetectionProfile",
    "BrowserSession",
    "DEFAULT_PROFILE",
    "NavResponse",
    "PlaywrightBrowser",
    "PlaywrightSession",
    "STEALTH_INIT_SCRIPT",
]
