from hypothesis import given, strategies as st

from services.audit_service.analyzers.findings import SEVERITY_PENALTY, SEOIssue
from services.audit_service.analyzers.issue_analyzer import (
    analyze_page,
    calculate_health_score,
    count_by_severity,
)
from services.audit_service.crawler.image_inspector import ImageAsset
from services.audit_service.crawler.site_crawler import CrawledPage, ImageRef

from .helpers import words

SEVERITIES = list(SEVERITY_PENALTY)


def _issue(severity: str) -> SEOIssue:
    return SEOIssue(
        type="t",
        category="c",
        title="t",
        description="d",
        severity=severity,
        risk_level="low",
        page_url="https://example.com/",
        auto_fixable=False,
    )


def test_page_without_title_and_thin_body():
    page = CrawledPage(url="https://example.com/", status_code=200, load_time_ms=120, body_text=words(50))

    issues = analyze_page(page)
    by_type = {i.type: i for i in issues}

    assert by_type["missing_title"].severity == "critical"
    assert by_type["thin_content"].severity == "high"
    assert by_type["thin_content"].risk_level == "high"
    assert calculate_health_score(issues) <= 75


def test_unfetched_page_reports_only_http_issue():
    page = CrawledPage(url="https://example.com/down", status_code=0, error="timeout")
    [issue] = analyze_page(page)
    assert issue.type == "http_error"
    assert issue.severity == "critical"
    assert issue.current_value == "timeout"


def test_client_error_status_is_high():
    [issue] = analyze_page(CrawledPage(url="https://example.com/gone", status_code=404, error="http_404"))
    assert issue.severity == "high"
    assert issue.title == "HTTP 404 Error"


def test_healthy_page_has_no_issues():
    page = CrawledPage(
        url="https://example.com/",
        status_code=200,
        load_time_ms=300,
        title="Handmade oak furniture from our workshop",
        meta_description="m" * 140,
        h1=["Oak furniture"],
        images=[ImageRef(src="https://example.com/a.jpg", alt="An oak table")],
        body_text=words(400),
    )
    assert analyze_page(page) == []


def test_accepts_snapshot_dict():
    page = CrawledPage(url="https://example.com/", status_code=200, body_text=words(50), h1=["A"])
    assert analyze_page(page.to_snapshot()) == analyze_page(page)


def test_missing_input_is_treated_as_unreachable():
    [issue] = analyze_page(None)
    assert issue.type == "http_error"


def test_slow_page_and_alt_text():
    page = CrawledPage(
        url="https://example.com/",
        status_code=200,
        load_time_ms=6200,
        body_text=words(400),
        images=[ImageRef(src=f"https://example.com/{i}.jpg") for i in range(6)],
    )
    by_type = {i.type: i for i in analyze_page(page)}
    assert by_type["slow_page"].severity == "high"
    assert by_type["slow_page"].current_value == "6.2s"
    assert by_type["missing_alt_text"].severity == "high"


def test_image_tags_become_page_issues():
    images = [
        ImageAsset(src=f"https://example.com/{i}.png", file_size=200 * 1024, width=1600, height=900,
                   issues=["oversized_file", "oversized_dimensions", "no_lazy_loading"])
        for i in range(4)
    ]
    page = CrawledPage(url="https://example.com/", status_code=200, body_text=words(400))
    types = {i.type: i for i in analyze_page(page, images)}

    assert types["oversized_images"].severity == "critical"
    assert types["oversized_dimensions"].auto_fixable is True
    assert types["missing_lazy_loading"].severity == "medium"


@given(st.lists(st.sampled_from(SEVERITIES), max_size=30))
def test_score_formula(severities):
    issues = [_issue(s) for s in severities]
    expected = max(0, 100 - sum(SEVERITY_PENALTY[s] for s in severities))
    assert calculate_health_score(issues) == expected
    assert 0 <= calculate_health_score(issues) <= 100


@given(st.lists(st.sampled_from(SEVERITIES), max_size=30))
def test_counts_sum_to_total(severities):
    counts = count_by_severity([_issue(s) for s in severities])
    assert sum(counts.values()) == len(severities)


@given(
    title=st.one_of(st.none(), st.text(max_size=80)),
    description=st.one_of(st.none(), st.text(max_size=200)),
    h1=st.lists(st.text(max_size=20), max_size=3),
    body=st.text(max_size=500),
    load_time=st.integers(min_value=0, max_value=10000),
)
def test_analysis_is_deterministic(title, description, h1, body, load_time):
    page = CrawledPage(
        url="https://example.com/",
        status_code=200,
        load_time_ms=load_time,
        title=title,
        meta_description=description,
        h1=h1,
        body_text=body,
    )
    first = analyze_page(page)
    assert analyze_page(page) == first
    assert analyze_page(CrawledPage.from_dict(page.to_snapshot())) == first
