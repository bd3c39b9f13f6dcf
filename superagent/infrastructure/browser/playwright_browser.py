import structlog
from playwright.async_api import async_playwright

logger = structlog.get_logger(__name__)


class PlaywrightBrowser:
    """Headless Chromium: one browser per fetch, closed before returning"""

    def __init__(self, timeout_seconds: float = 30.0):
        self.timeout_ms = int(timeout_seconds * 1000)

    async def fetch_visible_text(self, url: str) -> str:
        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=True)
            try:
                page = await browser.new_page()
                await page.goto(url, timeout=self.timeout_ms, wait_until="domcontentloaded")
                text = await page.inner_text("body", timeout=self.timeout_ms)
            finally:
                await browser.close()

        logger.debug("Fetched page text", url=url, chars=len(text))
        return text
