import re
from collections import Counter
from typing import Callable, Optional

from services.audit_service.analyzers.findings import SEOIssue
from services.audit_service.analyzers.meta_checker import DESCRIPTION_MAX, TITLE_MAX, site_name
from services.audit_service.crawler.image_inspector import MAX_WIDTH
from services.audit_service.crawler.site_crawler import CrawledPage
from services.management_service.optimization_modes import (
    MODE_SETTINGS,
    TIER_CONFIDENCE,
    ModeSettings,
    OptimizationMode,
)
from services.management_service.suggestions.base import (
    RISK_CONFIDENCE_FACTOR,
    ProposalSet,
    SuggestionProvider,
)

TIERS = (OptimizationMode.SAFE, OptimizationMode.BALANCED, OptimizationMode.AGGRESSIVE)

HEADING_MAX = 70

STOPWORDS = frozenset("""
a about above after again all also an and any are as at be because been before being below between both but by
can could did do does doing down during each few for from further had has have having here how if in into is it
its just more most no nor not now of off on once only or other our out over own same should so some such than that
the their them then there these they this those through to too under until up very was we were what when where which
while who whom why will with you your yours page home welcome click read learn more
""".split())

CALL_TO_ACTION = {
    "subtle": "Learn more.",
    "moderate": "Learn more about what we offer and get in touch.",
    "strong": "Get started today!",
}

CONTENT_TARGET_WORDS = {
    "corrections": 300,
    "improvements": 500,
    "comprehensive": 800,
}


def extract_keywords(text: str | None, limit: int = 3) -> list[str]:
    words = re.findall(r"[a-zA-Z][a-zA-Z'-]{3,}", (text or "").lower())
    counts = Counter(w for w in words if w not in STOPWORDS)
    return [w for w, _ in counts.most_common(limit)]


def trim_words(text: str, limit: int) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    cut = text[:limit]
    if " " in cut:
        cut = cut[: cut.rfind(" ")]
    return cut.rstrip(" |-:,;")


def _cap_growth(current: str, proposal: str, max_change: int, limit: int) -> str:
    if current and len(proposal) > len(current) + max_change:
        proposal = trim_words(proposal, len(current) + max_change)
    return trim_words(proposal, limit)


def _context_text(issue: SEOIssue, page: Optional[CrawledPage]) -> str:
    if page is None:
        return issue.current_value
    parts = [page.title or "", " ".join(page.h1), " ".join(page.h2), page.body_text or ""]
    return " ".join(p for p in parts if p)


def _title_variant(issue: SEOIssue, s: ModeSettings, brand: str, keywords: list[str]) -> str:
    current = issue.current_value
    base = issue.suggested_value or current or brand
    if issue.type == "long_title":
        base = current.split("|")[0].split(" - ")[0].strip() or current
        if s.mode == OptimizationMode.SAFE:
            return trim_words(current, TITLE_MAX)

    if s.mode == OptimizationMode.SAFE:
        proposal = f"{current} | {brand}" if current else base
    elif s.mode == OptimizationMode.BALANCED or not keywords:
        proposal = f"{base} | {brand}"
    else:
        proposal = f"{keywords[0].title()}: {base} | {brand}"
    return _cap_growth(current, proposal, s.title.max_length_change, TITLE_MAX)


def _meta_description_variant(issue: SEOIssue, s: ModeSettings, brand: str, keywords: list[str]) -> str:
    current = issue.current_value
    base = issue.suggested_value or current
    cta = CALL_TO_ACTION[s.meta_description.call_to_action_strength]

    if issue.type == "long_meta_description" and s.mode == OptimizationMode.SAFE:
        return trim_words(current, DESCRIPTION_MAX)

    lead = base
    if s.meta_description.keyword_inclusion == "comprehensive" and keywords:
        lead = f"{', '.join(k.title() for k in keywords)}: {base}"
    body = trim_words(lead, DESCRIPTION_MAX - len(cta) - 1)
    proposal = f"{body} {cta}".strip()
    return _cap_growth(current, proposal, s.meta_description.max_length_change, DESCRIPTION_MAX)


def _heading_variant(issue: SEOIssue, s: ModeSettings, brand: str, keywords: list[str]) -> str:
    base = issue.suggested_value or brand
    level = s.headings.restructuring_level
    if level == "minor" or not keywords:
        return trim_words(base, HEADING_MAX)
    if level == "moderate":
        return trim_words(f"{base} - {keywords[0].title()}", HEADING_MAX)
    return trim_words(f"{keywords[0].title()}: {base}", HEADING_MAX)


def _content_variant(issue: SEOIssue, s: ModeSettings, brand: str, keywords: list[str]) -> str:
    topics = ", ".join(keywords) or brand
    target = CONTENT_TARGET_WORDS[s.content.rewrite_level]
    if s.content.rewrite_level == "corrections":
        return f"Correct and expand the existing paragraphs to at least {target} words without changing the page structure."
    if s.content.rewrite_level == "improvements":
        return f"Add two or three sections about {topics} to reach {target}+ words and improve readability."
    return (
        f"Rewrite the page around {topics} with {target}+ words, an FAQ section "
        f"and up to {s.internal_links.max_new_links} new internal links."
    )


def _compression_variant(issue: SEOIssue, s: ModeSettings, brand: str, keywords: list[str]) -> str:
    img = s.images
    if issue.type == "missing_lazy_loading":
        return {
            "light": "Add loading='lazy' to images below the fold",
            "moderate": "Add loading='lazy' to all images except the hero image",
            "aggressive": "Add loading='lazy' to all images except the first and set explicit width and height",
        }[img.compression_level]

    steps = [f"Re-compress at quality {img.quality}"]
    if img.format_conversion:
        steps.append("convert to WebP")
    elif issue.type == "png_to_webp":
        steps.append("keep PNG with lossless optimization")
    if img.compression_level == "aggressive" or issue.type == "oversized_dimensions":
        steps.append(f"resize to max {MAX_WIDTH}px width")
    return ", ".join(steps)


def _alt_text_variant(issue: SEOIssue, s: ModeSettings, brand: str, keywords: list[str]) -> str:
    generation = s.images.alt_text_generation
    if generation == "minimal":
        return "Add short alt text naming what each image shows"
    if generation == "descriptive" or not keywords:
        return "Add descriptive alt text derived from each image's file name and surrounding content"
    return f"Add descriptive alt text that mentions '{keywords[0]}' where relevant"


VARIANT_BUILDERS: dict[str, Callable[[SEOIssue, ModeSettings, str, list[str]], str]] = {
    "missing_title": _title_variant,
    "short_title": _title_variant,
    "long_title": _title_variant,
    "missing_meta_description": _meta_description_variant,
    "short_meta_description": _meta_description_variant,
    "long_meta_description": _meta_description_variant,
    "missing_h1": _heading_variant,
    "multiple_h1": _heading_variant,
    "thin_content": _content_variant,
    "oversized_images": _compression_variant,
    "png_to_webp": _compression_variant,
    "oversized_dimensions": _compression_variant,
    "poor_compression": _compression_variant,
    "missing_lazy_loading": _compression_variant,
    "missing_alt_text": _alt_text_variant,
}


def tier_confidences(issue: SEOIssue) -> dict[str, float]:
    factor = RISK_CONFIDENCE_FACTOR.get(issue.risk_level, 0.75)
    return {tier.value: round(TIER_CONFIDENCE[tier] * factor, 4) for tier in TIERS}


def build_proposals(issue: SEOIssue, page_context: Optional[CrawledPage] = None) -> ProposalSet:
    brand = site_name(issue.page_url) or "our site"
    keywords = extract_keywords(_context_text(issue, page_context))
    builder = VARIANT_BUILDERS.get(issue.type)

    variants = {}
    for tier in TIERS:
        if builder is None:
            variants[tier.value] = issue.suggested_value or "Manual review required"
        else:
            variants[tier.value] = builder(issue, MODE_SETTINGS[tier], brand, keywords)

    return ProposalSet(
        safe=variants["safe"],
        balanced=variants["balanced"],
        aggressive=variants["aggressive"],
        reasoning=f"{issue.description} Rule-based proposals for the safe, balanced and aggressive profiles.",
        confidences=tier_confidences(issue),
        source="rule_based",
    )


class RuleBasedSuggestionProvider(SuggestionProvider):
    """Deterministic provider: identical input always yields identical proposals."""

    name = "rule_based"

    async def generate_proposals(self, issue: SEOIssue, page_context: Optional[CrawledPage] = None) -> ProposalSet:
        return build_proposals(issue, page_context)
