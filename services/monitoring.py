"""
Website monitoring for Sophia businesses.

Drives a headless browser through fixed scripts: an uptime/health check, a
simplified performance and accessibility audit, a payment-flow UI test and a
screenshot capture. The health check and the payment-flow test fold browser
failures into their returned result. The performance audit and the screenshot
capture let browser errors propagate. Every method raises for a business that
has no website configured.
"""

import logging
import os
import time
from datetime import datetime
from typing import Callable, Dict, Any, List, Optional

from services.browser_client import BrowserClient
from services.config import SCREENSHOT_DIR
from services.database import Business
from services.errors import BusinessRuleError

logger = logging.getLogger(__name__)

PAGE_STATE_SCRIPT = """
() => ({
    title: document.title,
    hasJsErrors: !!(window.errors && window.errors.length > 0),
    consoleErrors: window.consoleErrors || []
})
"""

BROKEN_ELEMENTS_SCRIPT = """
() => Array.from(document.querySelectorAll('img'))
        .filter(img => !img.complete || img.naturalWidth === 0).length
    + Array.from(document.querySelectorAll('a[href^="http"]'))
        .filter(link => { try { new URL(link.href); return false; } catch (e) { return true; } }).length
"""

PERFORMANCE_SCRIPT = """
() => new Promise((resolve) => {
    const collect = () => {
        const navigation = performance.getEntriesByType('navigation')[0];
        const paint = performance.getEntriesByType('paint');
        const fcp = paint.find(p => p.name === 'first-contentful-paint');
        resolve({
            loadTime: navigation ? navigation.loadEventEnd - navigation.startTime : 0,
            firstContentfulPaint: fcp ? fcp.startTime : 0,
            largestContentfulPaint: 0,
            cumulativeLayoutShift: 0
        });
    };
    if (document.readyState === 'complete') {
        collect();
    } else {
        window.addEventListener('load', () => setTimeout(collect, 1000));
    }
})
"""

ACCESSIBILITY_SCRIPT = """
() => ({
    hasAltTexts: Array.from(document.querySelectorAll('img')).every(img => img.alt),
    hasProperHeadings: document.querySelector('h1') !== null,
    hasFormLabels: Array.from(document.querySelectorAll('input')).every(input =>
        (input.labels && input.labels.length > 0) || input.getAttribute('aria-label') || input.getAttribute('placeholder'))
})
"""

STRIPE_FORM_SCRIPT = """
() => document.querySelector('iframe[src*="stripe"]') !== null
    || document.querySelector('[data-stripe]') !== null
    || document.querySelector('.stripe-form') !== null
    || document.querySelector('#card-element') !== null
"""

SETTLE_SCRIPT = """
() => new Promise(resolve => {
    if (document.readyState === 'complete') {
        setTimeout(resolve, 1000);
    } else {
        window.addEventListener('load', () => setTimeout(resolve, 1000));
    }
})
"""

SUBSCRIBE_SELECTORS = [
    'button:has-text("Subscribe")',
    'a:has-text("Subscribe")',
    'button:has-text("Get Started")',
    'a:has-text("Get Started")',
    'button:has-text("Buy Now")',
    '.subscribe-btn',
    '.pricing-btn',
    '#subscribe',
]

BEST_PRACTICES_SCORE = 85
SEO_SCORE = 90


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _require_website(business: Business) -> str:
    if not business.website_url:
        raise BusinessRuleError(f"Business {business.id} has no website URL configured")
    return business.website_url


class WebsiteMonitoringService:
    """Browser-driven website checks. browser_factory returns a fresh BrowserClient."""

    def __init__(self, browser_factory: Optional[Callable[[], BrowserClient]] = None, screenshot_dir: str = SCREENSHOT_DIR):
        self.browser_factory = browser_factory or BrowserClient
        self.screenshot_dir = screenshot_dir

    async def check_website_health(self, business: Business) -> Dict[str, Any]:
        url = _require_website(business)
        logger.info("Checking website health for %s: %s", business.name, url)

        start = time.monotonic()
        error_messages: List[str] = []
        title = ""
        http_status = 0
        has_errors = False

        try:
            async with self.browser_factory() as browser:
                http_status = await browser.navigate(url) or 200

                page_data = await browser.evaluate(PAGE_STATE_SCRIPT) or {}
                title = page_data.get("title") or "No Title"
                has_errors = bool(page_data.get("hasJsErrors"))
                error_messages.extend(page_data.get("consoleErrors") or [])

                broken = await browser.evaluate(BROKEN_ELEMENTS_SCRIPT) or 0
                if broken > 0:
                    has_errors = True
                    error_messages.append(f"Found {broken} broken images or links")
        except Exception as e:
            has_errors = True
            http_status = 500
            error_messages.append(f"Navigation failed: {e}")

        status = {
            "isOnline": 200 <= http_status < 400,
            "responseTime": _elapsed_ms(start),
            "httpStatus": http_status,
            "title": title,
            "hasErrors": has_errors,
            "errorMessages": error_messages,
            "timestamp": datetime.utcnow().isoformat(),
        }
        logger.info(
            "Health check for %s: %s in %dms, %d errors",
            business.name, "ONLINE" if status["isOnline"] else "OFFLINE", status["responseTime"], len(error_messages)
        )
        return status

    async def run_performance_audit(self, business: Business) -> Dict[str, Any]:
        """
        Simplified Lighthouse-style audit.

        performance drops 10 points per second of load time; accessibility is
        the share of three basic checks that pass (alt texts, an h1, labelled
        inputs). Best practices and SEO are fixed scores.
        """
        url = _require_website(business)
        logger.info("Running performance audit for %s", business.name)

        async with self.browser_factory() as browser:
            await browser.navigate(url)
            perf = await browser.evaluate(PERFORMANCE_SCRIPT) or {}
            a11y = await browser.evaluate(ACCESSIBILITY_SCRIPT) or {}

        load_time_ms = perf.get("loadTime") or 0
        performance = max(0.0, 100 - (load_time_ms / 1000) * 10)
        checks = [a11y.get("hasAltTexts"), a11y.get("hasProperHeadings"), a11y.get("hasFormLabels")]
        accessibility = sum(1 for passed in checks if passed) / 3 * 100

        metrics = {
            "performance": round(performance),
            "accessibility": round(accessibility),
            "bestPractices": BEST_PRACTICES_SCORE,
            "seo": SEO_SCORE,
            "firstContentfulPaint": perf.get("firstContentfulPaint") or 0,
            "largestContentfulPaint": perf.get("largestContentfulPaint") or 0,
            "cumulativeLayoutShift": perf.get("cumulativeLayoutShift") or 0,
        }
        logger.info("Performance audit for %s: %s", business.name, metrics)
        return metrics

    async def test_payment_flow(self, business: Business) -> Dict[str, Any]:
        url = _require_website(business)
        logger.info("Testing payment flow for %s", business.name)

        output_dir = os.path.join(self.screenshot_dir, "payment-tests")
        prefix = f"payment-test-{business.id}"
        start = time.monotonic()
        steps: List[Dict[str, Any]] = []

        try:
            async with self.browser_factory() as browser:
                step_start = time.monotonic()
                await browser.navigate(url)
                shot = await browser.screenshot(f"{prefix}-step1", output_dir=output_dir)
                steps.append({
                    "step": "Navigate to homepage",
                    "success": True,
                    "screenshot": shot,
                    "duration": _elapsed_ms(step_start),
                })

                step_start = time.monotonic()
                subscribe_found = False
                for selector in SUBSCRIBE_SELECTORS:
                    try:
                        if await browser.count(selector) > 0:
                            await browser.click(selector)
                            subscribe_found = True
                            break
                    except Exception as e:
                        logger.debug("Selector %s not usable: %s", selector, e)

                step = {
                    "step": "Click subscribe/pricing button",
                    "success": subscribe_found,
                    "duration": _elapsed_ms(step_start),
                }
                if subscribe_found:
                    step["screenshot"] = await browser.screenshot(f"{prefix}-step2", output_dir=output_dir)
                else:
                    step["error"] = "No subscribe button found"
                steps.append(step)

                step_start = time.monotonic()
                has_stripe_form = bool(await browser.evaluate(STRIPE_FORM_SCRIPT))
                step = {
                    "step": "Verify Stripe payment form present",
                    "success": has_stripe_form,
                    "duration": _elapsed_ms(step_start),
                }
                if has_stripe_form:
                    step["screenshot"] = await browser.screenshot(f"{prefix}-step3", output_dir=output_dir)
                else:
                    step["error"] = "No Stripe payment form found"
                steps.append(step)
        except Exception as e:
            steps.append({
                "step": "Payment flow test failed",
                "success": False,
                "error": str(e),
                "duration": _elapsed_ms(start),
            })

        result = {
            "flowName": "Payment Flow Test",
            "success": all(step["success"] for step in steps),
            "steps": steps,
            "totalDuration": _elapsed_ms(start),
        }
        logger.info(
            "Payment flow test for %s: success=%s, %d steps in %dms",
            business.name, result["success"], len(steps), result["totalDuration"]
        )
        return result

    async def capture_screenshot(self, business: Business, page_name: str = "homepage") -> str:
        """Capture a 1280x720 screenshot for visual regression. Returns the file name."""
        url = _require_website(business)
        output_dir = os.path.join(self.screenshot_dir, "visual-regression")
        name = f"{business.id}-{page_name}-{int(time.time() * 1000)}"

        async with self.browser_factory() as browser:
            await browser.navigate(url)
            await browser.evaluate(SETTLE_SCRIPT)
            file_name = await browser.screenshot(name, output_dir=output_dir, width=1280, height=720)

        logger.info("Screenshot saved for %s: %s", business.name, file_name)
        return file_name
