import re
from urllib.parse import urlparse

from services.audit_service.analyzers.findings import RiskLevel, SEOIssue, Severity
from services.audit_service.crawler.site_crawler import CrawledPage

TITLE_MIN = 30
TITLE_MAX = 60
DESCRIPTION_MIN = 120
DESCRIPTION_MAX = 160


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def site_name(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def generate_title_suggestion(page: CrawledPage) -> str:
    headings = [h.strip() for h in page.h1 if h and h.strip()]
    if headings:
        return truncate(headings[0], 58)

    if page.body_text:
        words = " ".join(page.body_text.split()[:10])
        return truncate(words, 58)

    host = site_name(page.url)
    if host:
        return f"Welcome to {host}"
    return "Your Page Title Here - Describe Your Content"


def generate_meta_description_suggestion(page: CrawledPage) -> str:
    if page.body_text:
        description = ""
        for sentence in re.split(r"[.!?]+", page.body_text):
            sentence = sentence.strip()
            if not sentence:
                continue
            if len(description) + len(sentence) + 2 >= 155:
                break
            description += sentence + ". "
        return description.strip() or truncate(page.body_text, 158)

    if page.title:
        return f"Learn more about {page.title}. Discover valuable information and insights."

    return "Discover valuable content and insights on this page. Learn more about our offerings."


def check_title(page: CrawledPage) -> list[SEOIssue]:
    title = (page.title or "").strip()
    u = page.url

    if not title:
        return [SEOIssue(
            type="missing_title",
            category="Meta Tags",
            title="Missing Page Title",
            description="This page is missing a title tag. Page titles are crucial for SEO and user experience.",
            severity=Severity.CRITICAL.value,
            risk_level=RiskLevel.LOW.value,
            page_url=u,
            auto_fixable=True,
            current_value="",
            suggested_value=generate_title_suggestion(page),
        )]
    if len(title) < TITLE_MIN:
        return [SEOIssue(
            type="short_title",
            category="Meta Tags",
            title="Title Too Short",
            description=f"Title is only {len(title)} characters. Titles should be 50-60 characters for optimal SEO.",
            severity=Severity.MEDIUM.value,
            risk_level=RiskLevel.LOW.value,
            page_url=u,
            auto_fixable=True,
            current_value=title,
            suggested_value=generate_title_suggestion(page),
        )]
    if len(title) > TITLE_MAX:
        return [SEOIssue(
            type="long_title",
            category="Meta Tags",
            title="Title Too Long",
            description=f"Title is {len(title)} characters. Titles over {TITLE_MAX} characters may be truncated in search results.",
            severity=Severity.LOW.value,
            risk_level=RiskLevel.LOW.value,
            page_url=u,
            auto_fixable=True,
            current_value=title,
            suggested_value=truncate(title, TITLE_MAX),
        )]
    return []


def check_meta_description(page: CrawledPage) -> list[SEOIssue]:
    description = (page.meta_description or "").strip()
    u = page.url

    if not description:
        return [SEOIssue(
            type="missing_meta_description",
            category="Meta Tags",
            title="Missing Meta Description",
            description="This page is missing a meta description. Meta descriptions help improve click-through rates from search results.",
            severity=Severity.HIGH.value,
            risk_level=RiskLevel.LOW.value,
            page_url=u,
            auto_fixable=True,
            current_value="",
            suggested_value=generate_meta_description_suggestion(page),
        )]
    if len(description) < DESCRIPTION_MIN:
        return [SEOIssue(
            type="short_meta_description",
            category="Meta Tags",
            title="Meta Description Too Short",
            description=f"Meta description is only {len(description)} characters. Aim for 150-160 characters.",
            severity=Severity.MEDIUM.value,
            risk_level=RiskLevel.LOW.value,
            page_url=u,
            auto_fixable=True,
            current_value=description,
            suggested_value=generate_meta_description_suggestion(page),
        )]
    if len(description) > DESCRIPTION_MAX:
        return [SEOIssue(
            type="long_meta_description",
            category="Meta Tags",
            title="Meta Description Too Long",
            description=f"Meta description is {len(description)} characters. Descriptions over {DESCRIPTION_MAX} characters may be truncated.",
            severity=Severity.LOW.value,
            risk_level=RiskLevel.LOW.value,
            page_url=u,
            auto_fixable=True,
            current_value=description,
            suggested_value=truncate(description, DESCRIPTION_MAX),
        )]
    return []


def check_headings(page: CrawledPage) -> list[SEOIssue]:
    h1 = [h for h in page.h1 if h and h.strip()]
    u = page.url

    if not h1:
        return [SEOIssue(
            type="missing_h1",
            category="Headings",
            title="Missing H1 Tag",
            description="This page is missing an H1 heading. H1 tags are important for accessibility and SEO.",
            severity=Severity.HIGH.value,
            risk_level=RiskLevel.MEDIUM.value,
            page_url=u,
            auto_fixable=False,
            current_value="",
            suggested_value=(page.title or "").strip() or "Add a descriptive H1 heading",
        )]
    if len(h1) > 1:
        return [SEOIssue(
            type="multiple_h1",
            category="Headings",
            title="Multiple H1 Tags",
            description=f"Found {len(h1)} H1 tags. A page should have exactly one H1.",
            severity=Severity.MEDIUM.value,
            risk_level=RiskLevel.MEDIUM.value,
            page_url=u,
            auto_fixable=False,
            current_value=", ".join(h1),
            suggested_value=h1[0],
        )]
    return []


def check_meta(page: CrawledPage) -> list[SEOIssue]:
    return check_title(page) + check_meta_description(page) + check_headings(page)
