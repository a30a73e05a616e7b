"""Deterministic rule set mapping crawled pages and inspected images to issues.

Every function here is pure: no I/O, no clock, no randomness. Thresholds are
fixed policy constants in the individual checker modules.
"""
from typing import Any, Iterable

from services.audit_service.analyzers.content_checker import (
    check_alt_text,
    check_content_length,
    check_http_status,
    check_load_time,
)
from services.audit_service.analyzers.findings import SEVERITY_PENALTY, SEOIssue, Severity
from services.audit_service.analyzers.image_checker import check_images
from services.audit_service.analyzers.meta_checker import check_meta
from services.audit_service.crawler.image_inspector import ImageAsset
from services.audit_service.crawler.site_crawler import CrawledPage


def _as_page(page: CrawledPage | dict[str, Any] | None) -> CrawledPage:
    if isinstance(page, CrawledPage):
        return page
    return CrawledPage.from_dict(page or {})


def analyze_page(page: CrawledPage | dict[str, Any] | None, images: list[ImageAsset] | None = None) -> list[SEOIssue]:
    """Run every rule against one page.

    Content rules only run for pages whose body was actually fetched; a page
    that failed to load yields its HTTP/reachability issue alone.
    """
    page = _as_page(page)
    if images is None:
        images = page.images_detailed

    issues: list[SEOIssue] = []
    issues.extend(check_http_status(page))
    if not page.fetched:
        return issues

    issues.extend(check_meta(page))
    issues.extend(check_alt_text(page))
    issues.extend(check_load_time(page))
    issues.extend(check_content_length(page))
    issues.extend(check_images(images or [], page.url))
    return issues


def _severity_of(issue: Any) -> str | None:
    if isinstance(issue, dict):
        value = issue.get("severity")
    else:
        value = getattr(issue, "severity", None)
    if isinstance(value, Severity):
        return value.value
    return value


def calculate_health_score(issues: Iterable[Any]) -> int:
    score = 100
    for issue in issues:
        score -= SEVERITY_PENALTY.get(_severity_of(issue), 0)
    return max(0, min(100, score))


def count_by_severity(issues: Iterable[Any]) -> dict[str, int]:
    counts = {s.value: 0 for s in Severity}
    for issue in issues:
        severity = _severity_of(issue)
        if severity in counts:
            counts[severity] += 1
    return counts
