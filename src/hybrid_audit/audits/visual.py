"""Visual/UX audits.

url_context: Gemini visits the live page through its URL Context tool.
screenshot: a captured screenshot is sent to a vision-capable model.
"""

import base64
import time
from typing import Any, Dict, Optional
from urllib.parse import quote

from ..log import get_logger
from ..retrieval.fetch import Fetcher
from ..schemas.findings import MicroAuditResult
from .base import AuditContext, AuditInputs, MicroAudit

logger = get_logger("audits.visual")

SCREENSHOT_SERVICE_URL = "https://s0.wp.com/mshots/v1/{url}?w=1280&h=960"
SCREENSHOT_TIMEOUT_MS = 15000
SCREENSHOT_FAILED = "Screenshot capture failed"


async def capture_screenshot(fetcher: Fetcher, url: str, timeout_ms: int = SCREENSHOT_TIMEOUT_MS) -> Optional[str]:
    """Base64 JPEG of the page from the screenshot service, or None."""
    outcome = await fetcher.fetch(
        SCREENSHOT_SERVICE_URL.format(url=quote(url, safe="")),
        timeout_ms=timeout_ms,
        retries=0,
        follow_redirects=True,
    )
    if outcome.payload is None:
        logger.warning(f"Screenshot capture failed for {url}: {outcome.error}")
        return None
    if not outcome.payload.ok:
        logger.warning(f"Screenshot capture failed for {url}: HTTP {outcome.payload.status}")
        return None
    return base64.b64encode(outcome.payload.content).decode("ascii")


class VisualUrlContextAudit(MicroAudit):
    audit_type = "visual-url-context"
    prompt_name = "visual_url_context"
    id_prefix = "visual-url"
    category = "ux"
    temperature = 0.4

    def prompt_variables(self, inputs: AuditInputs) -> Dict[str, Any]:
        return {"url": inputs.layer1.normalized_url.href}


class VisualScreenshotAudit(MicroAudit):
    audit_type = "visual-screenshot"
    prompt_name = "visual_screenshot"
    id_prefix = "visual-shot"
    category = "ux"
    temperature = 0.4

    async def run(self, inputs: AuditInputs, ctx: AuditContext, image: Optional[str] = None) -> MicroAuditResult:
        start = time.monotonic()
        screenshot = image or await capture_screenshot(ctx.fetcher, inputs.layer1.normalized_url.href)
        if screenshot is None:
            return self._result(start, self.assignment(ctx), raw_output="", error=SCREENSHOT_FAILED)
        return await super().run(inputs, ctx, image=screenshot)
