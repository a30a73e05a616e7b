from services.audit_service.analyzers.findings import RiskLevel, SEOIssue, Severity
from services.audit_service.crawler.site_crawler import CrawledPage

SLOW_PAGE_MS = 3000
VERY_SLOW_PAGE_MS = 5000
THIN_CONTENT_WORDS = 300
VERY_THIN_CONTENT_WORDS = 100
MANY_MISSING_ALT = 5


def word_count(text: str | None) -> int:
    return len((text or "").split())


def check_alt_text(page: CrawledPage) -> list[SEOIssue]:
    missing = [img for img in page.images if not img.alt or not img.alt.strip()]
    if not missing:
        return []
    return [SEOIssue(
        type="missing_alt_text",
        category="Accessibility",
        title=f"{len(missing)} Images Missing Alt Text",
        description="Images without alt text hurt accessibility and SEO. Add descriptive alt text to all images.",
        severity=Severity.HIGH.value if len(missing) > MANY_MISSING_ALT else Severity.MEDIUM.value,
        risk_level=RiskLevel.LOW.value,
        page_url=page.url,
        auto_fixable=False,
        current_value=f"{len(missing)} images without alt text",
        suggested_value="Add descriptive alt text to each image",
    )]


def check_load_time(page: CrawledPage) -> list[SEOIssue]:
    load_time = page.load_time_ms or 0
    if load_time <= SLOW_PAGE_MS:
        return []
    seconds = f"{load_time / 1000:.1f}s"
    return [SEOIssue(
        type="slow_page",
        category="Performance",
        title="Slow Page Load Time",
        description=f"Page took {seconds} to load. Aim for under 3 seconds.",
        severity=Severity.HIGH.value if load_time > VERY_SLOW_PAGE_MS else Severity.MEDIUM.value,
        risk_level=RiskLevel.HIGH.value,
        page_url=page.url,
        auto_fixable=False,
        current_value=seconds,
        suggested_value="Optimize images, enable caching, minify resources",
    )]


def check_content_length(page: CrawledPage) -> list[SEOIssue]:
    words = word_count(page.body_text)
    if words >= THIN_CONTENT_WORDS:
        return []
    return [SEOIssue(
        type="thin_content",
        category="Content",
        title="Thin Content",
        description=f"Page has only {words} words. Consider adding more valuable content.",
        severity=Severity.HIGH.value if words < VERY_THIN_CONTENT_WORDS else Severity.MEDIUM.value,
        risk_level=RiskLevel.HIGH.value,
        page_url=page.url,
        auto_fixable=False,
        current_value=f"{words} words",
        suggested_value="Add more comprehensive, valuable content (aim for 500+ words)",
    )]


def check_http_status(page: CrawledPage) -> list[SEOIssue]:
    status = page.status_code or 0
    if status == 200:
        return []

    if status == 0:
        title = "Page Unreachable"
        description = f"Page could not be fetched ({page.error or 'no response'})."
        current = page.error or "no response"
    else:
        title = f"HTTP {status} Error"
        description = f"Page returned HTTP {status} status code."
        current = f"HTTP {status}"

    return [SEOIssue(
        type="http_error",
        category="Technical",
        title=title,
        description=description,
        severity=Severity.CRITICAL.value if status == 0 or status >= 500 else Severity.HIGH.value,
        risk_level=RiskLevel.HIGH.value,
        page_url=page.url,
        auto_fixable=False,
        current_value=current,
        suggested_value="Fix server configuration or redirect issues",
    )]
