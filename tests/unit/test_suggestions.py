import json

import httpx
import pytest
import respx

from services.audit_service.analyzers.findings import SEOIssue
from services.audit_service.analyzers.meta_checker import check_title
from services.audit_service.crawler.site_crawler import CrawledPage
from services.management_service.config import Settings
from services.management_service.suggestions import (
    FallbackSuggestionProvider,
    LLMSuggestionProvider,
    RuleBasedSuggestionProvider,
    SuggestionProviderError,
    build_suggestion_provider,
)
from services.management_service.suggestions.rule_based import extract_keywords, tier_confidences, trim_words

LLM_URL = "https://llm.test/v1/chat/completions"


def _issue(type_: str, current: str = "", suggested: str = "", risk: str = "low") -> SEOIssue:
    return SEOIssue(
        type=type_,
        category="Meta Tags",
        title=type_,
        description="Something is wrong.",
        severity="medium",
        risk_level=risk,
        page_url="https://www.oakworks.com/tables",
        auto_fixable=True,
        current_value=current,
        suggested_value=suggested,
    )


def _page() -> CrawledPage:
    return CrawledPage(
        url="https://www.oakworks.com/tables",
        status_code=200,
        title="Oak Tables",
        h1=["Solid Oak Dining Tables"],
        body_text="Our oak tables are handmade. Every oak table is finished with natural oils. Tables ship free.",
    )


def _completion(content) -> dict:
    if not isinstance(content, str):
        content = json.dumps(content)
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.mark.asyncio
async def test_rule_based_is_deterministic():
    provider = RuleBasedSuggestionProvider()
    issue = _issue("short_title", current="Oak Tables", suggested="Solid Oak Dining Tables")

    first = await provider.generate_proposals(issue, _page())
    second = await provider.generate_proposals(issue, _page())

    assert first == second
    assert first.source == "rule_based"
    assert all([first.safe, first.balanced, first.aggressive])


@pytest.mark.asyncio
async def test_title_tiers_respect_length_limits():
    provider = RuleBasedSuggestionProvider()
    issue = _issue("short_title", current="Oak Tables", suggested="Solid Oak Dining Tables")
    proposals = await provider.generate_proposals(issue, _page())

    assert len(proposals.safe) <= len("Oak Tables") + 10
    assert len(proposals.balanced) <= len("Oak Tables") + 20
    assert len(proposals.aggressive) <= 60
    assert proposals.aggressive.startswith("Tables: ")


@pytest.mark.asyncio
async def test_missing_title_proposals_use_page_context():
    page = _page()
    page.title = None
    [issue] = check_title(page)
    proposals = await RuleBasedSuggestionProvider().generate_proposals(issue, page)

    assert proposals.safe == "Solid Oak Dining Tables"
    assert proposals.balanced == "Solid Oak Dining Tables | oakworks.com"


@pytest.mark.asyncio
async def test_unknown_issue_type_repeats_rule_suggestion():
    proposals = await RuleBasedSuggestionProvider().generate_proposals(_issue("http_error", suggested="Fix the server"))
    assert proposals.safe == proposals.balanced == proposals.aggressive == "Fix the server"


@pytest.mark.asyncio
async def test_content_and_image_tiers_differ():
    provider = RuleBasedSuggestionProvider()
    thin = await provider.generate_proposals(_issue("thin_content", risk="high"), _page())
    assert "300 words" in thin.safe
    assert "800+" in thin.aggressive

    png = await provider.generate_proposals(_issue("png_to_webp"))
    assert "WebP" not in png.safe
    assert "convert to WebP" in png.balanced


def test_confidence_depends_on_tier_and_risk():
    assert tier_confidences(_issue("missing_title")) == {"safe": 0.95, "balanced": 0.85, "aggressive": 0.75}
    high = tier_confidences(_issue("thin_content", risk="high"))
    assert high["safe"] == pytest.approx(0.7125)


def test_text_helpers():
    assert extract_keywords("Walnut tables, walnut chairs and more walnut tables") == ["walnut", "tables", "chairs"]
    assert trim_words("one two three four", 9) == "one two"


@pytest.mark.asyncio
async def test_llm_provider_parses_completion():
    body = {
        "safe": "Oak Tables | OakWorks",
        "balanced": "Solid Oak Dining Tables | OakWorks",
        "aggressive": "Handmade Oak Dining Tables - Free Shipping | OakWorks",
        "reasoning": "Adds brand and keywords.",
        "confidences": {"safe": 0.9, "balanced": 1.7},
    }
    with respx.mock:
        route = respx.post(LLM_URL).respond(200, json=_completion(body))
        provider = LLMSuggestionProvider(api_key="sk-test", base_url="https://llm.test/v1/", model="m")
        proposals = await provider.generate_proposals(_issue("short_title", current="Oak Tables"), _page())

    sent = json.loads(route.calls.last.request.content)
    assert route.calls.last.request.headers["Authorization"] == "Bearer sk-test"
    assert sent["model"] == "m"
    assert "Oak Tables" in sent["messages"][1]["content"]

    assert proposals.source == "llm"
    assert proposals.balanced == "Solid Oak Dining Tables | OakWorks"
    assert proposals.confidences == {"safe": 0.9, "balanced": 1.0, "aggressive": 0.75}


@pytest.mark.asyncio
async def test_llm_provider_errors():
    provider = LLMSuggestionProvider(api_key="sk-test", base_url="https://llm.test/v1")
    with respx.mock:
        respx.post(LLM_URL).respond(503)
        with pytest.raises(SuggestionProviderError, match="HTTP 503"):
            await provider.generate_proposals(_issue("short_title"))

    with respx.mock:
        respx.post(LLM_URL).respond(200, json=_completion("not json"))
        with pytest.raises(SuggestionProviderError, match="could not be parsed"):
            await provider.generate_proposals(_issue("short_title"))

    with respx.mock:
        respx.post(LLM_URL).respond(200, json=_completion({"safe": "", "balanced": "b", "aggressive": "c"}))
        with pytest.raises(SuggestionProviderError):
            await provider.generate_proposals(_issue("short_title"))


def test_llm_provider_requires_key():
    with pytest.raises(ValueError):
        LLMSuggestionProvider(api_key="")


@pytest.mark.asyncio
async def test_fallback_caps_confidence():
    primary = LLMSuggestionProvider(api_key="sk-test", base_url="https://llm.test/v1")
    provider = FallbackSuggestionProvider(primary)
    issue = _issue("short_title", current="Oak Tables", suggested="Solid Oak Dining Tables")

    with respx.mock:
        respx.post(LLM_URL).respond(500)
        proposals = await provider.generate_proposals(issue, _page())

    expected = await RuleBasedSuggestionProvider().generate_proposals(issue, _page())
    assert proposals.source == "fallback"
    assert proposals.safe == expected.safe
    assert max(proposals.confidences.values()) <= 0.5


@pytest.mark.asyncio
async def test_fallback_passes_through_success():
    class Fixed(RuleBasedSuggestionProvider):
        name = "fixed"

    proposals = await FallbackSuggestionProvider(Fixed()).generate_proposals(_issue("missing_title", suggested="T"))
    assert proposals.source == "rule_based"
    assert proposals.confidences["safe"] == 0.95


def test_build_suggestion_provider():
    assert isinstance(build_suggestion_provider(Settings(llm_api_key=None)), RuleBasedSuggestionProvider)

    provider = build_suggestion_provider(Settings(llm_api_key="sk-test", llm_base_url="https://llm.test/v1"))
    assert isinstance(provider, FallbackSuggestionProvider)
    assert isinstance(provider.primary, LLMSuggestionProvider)
    assert provider.primary.base_url == "https://llm.test/v1"
