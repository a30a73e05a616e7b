from dataclasses import dataclass
from enum import Enum


class OptimizationMode(str, Enum):
    SAFE = "safe"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"


@dataclass(frozen=True)
class TitleSettings:
    max_length_change: int
    keyword_density: str
    restructure_allowed: bool


@dataclass(frozen=True)
class MetaDescriptionSettings:
    max_length_change: int
    call_to_action_strength: str
    keyword_inclusion: str


@dataclass(frozen=True)
class HeadingSettings:
    restructuring_level: str
    keyword_optimization: str
    hierarchy_fixes: bool


@dataclass(frozen=True)
class KeywordSettings:
    density_target: float
    placement_strategy: str
    synonym_usage: str


@dataclass(frozen=True)
class InternalLinkSettings:
    max_new_links: int
    context_relevance: str
    anchor_text_optimization: str


@dataclass(frozen=True)
class ContentSettings:
    rewrite_level: str
    length_adjustment: str
    readability_target: str


@dataclass(frozen=True)
class ImageSettings:
    compression_level: str
    quality: int
    format_conversion: bool
    alt_text_generation: str


@dataclass(frozen=True)
class ModeSettings:
    mode: OptimizationMode
    title: TitleSettings
    meta_description: MetaDescriptionSettings
    headings: HeadingSettings
    keywords: KeywordSettings
    internal_links: InternalLinkSettings
    content: ContentSettings
    images: ImageSettings
    risk_tolerance: str
    auto_apply_threshold: float


SAFE_MODE = ModeSettings(
    mode=OptimizationMode.SAFE,
    title=TitleSettings(max_length_change=10, keyword_density="low", restructure_allowed=False),
    meta_description=MetaDescriptionSettings(max_length_change=20, call_to_action_strength="subtle", keyword_inclusion="minimal"),
    headings=HeadingSettings(restructuring_level="minor", keyword_optimization="conservative", hierarchy_fixes=True),
    keywords=KeywordSettings(density_target=1.0, placement_strategy="natural", synonym_usage="minimal"),
    internal_links=InternalLinkSettings(max_new_links=2, context_relevance="strict", anchor_text_optimization="minimal"),
    content=ContentSettings(rewrite_level="corrections", length_adjustment="none", readability_target="unchanged"),
    images=ImageSettings(compression_level="light", quality=90, format_conversion=False, alt_text_generation="minimal"),
    risk_tolerance="low",
    auto_apply_threshold=0.90,
)

BALANCED_MODE = ModeSettings(
    mode=OptimizationMode.BALANCED,
    title=TitleSettings(max_length_change=20, keyword_density="medium", restructure_allowed=True),
    meta_description=MetaDescriptionSettings(max_length_change=40, call_to_action_strength="moderate", keyword_inclusion="moderate"),
    headings=HeadingSettings(restructuring_level="moderate", keyword_optimization="balanced", hierarchy_fixes=True),
    keywords=KeywordSettings(density_target=1.5, placement_strategy="optimized", synonym_usage="moderate"),
    internal_links=InternalLinkSettings(max_new_links=5, context_relevance="moderate", anchor_text_optimization="balanced"),
    content=ContentSettings(rewrite_level="improvements", length_adjustment="moderate", readability_target="improved"),
    images=ImageSettings(compression_level="moderate", quality=80, format_conversion=True, alt_text_generation="descriptive"),
    risk_tolerance="medium",
    auto_apply_threshold=0.80,
)

AGGRESSIVE_MODE = ModeSettings(
    mode=OptimizationMode.AGGRESSIVE,
    title=TitleSettings(max_length_change=40, keyword_density="high", restructure_allowed=True),
    meta_description=MetaDescriptionSettings(max_length_change=60, call_to_action_strength="strong", keyword_inclusion="comprehensive"),
    headings=HeadingSettings(restructuring_level="complete", keyword_optimization="aggressive", hierarchy_fixes=True),
    keywords=KeywordSettings(density_target=2.5, placement_strategy="comprehensive", synonym_usage="extensive"),
    internal_links=InternalLinkSettings(max_new_links=10, context_relevance="broad", anchor_text_optimization="aggressive"),
    content=ContentSettings(rewrite_level="comprehensive", length_adjustment="significant", readability_target="optimized"),
    images=ImageSettings(compression_level="aggressive", quality=65, format_conversion=True, alt_text_generation="keyword-rich"),
    risk_tolerance="high",
    auto_apply_threshold=0.70,
)

MODE_SETTINGS = {
    OptimizationMode.SAFE: SAFE_MODE,
    OptimizationMode.BALANCED: BALANCED_MODE,
    OptimizationMode.AGGRESSIVE: AGGRESSIVE_MODE,
}

# Per-tier proposal profile, independent of which tier a run selects.
TIER_CONFIDENCE = {
    OptimizationMode.SAFE: 0.95,
    OptimizationMode.BALANCED: 0.85,
    OptimizationMode.AGGRESSIVE: 0.75,
}

TIER_IMPACT = {
    OptimizationMode.SAFE: "+5-10%",
    OptimizationMode.BALANCED: "+15-25%",
    OptimizationMode.AGGRESSIVE: "+25-40%",
}

MODE_LABELS = {
    OptimizationMode.SAFE: "Safe",
    OptimizationMode.BALANCED: "Balanced",
    OptimizationMode.AGGRESSIVE: "Aggressive",
}

MODE_DESCRIPTIONS = {
    OptimizationMode.SAFE: "Minimal changes and conservative optimizations. Suited to established sites.",
    OptimizationMode.BALANCED: "Regular SEO optimization with a good balance between risk and impact.",
    OptimizationMode.AGGRESSIVE: "Strong optimizations for maximum SEO impact. Suited to new or weak sites.",
}


def parse_mode(value: "OptimizationMode | str | None", default: OptimizationMode = OptimizationMode.BALANCED) -> OptimizationMode:
    if value is None or value == "":
        return default
    if isinstance(value, OptimizationMode):
        return value
    try:
        return OptimizationMode(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown optimization mode: {value!r}") from None


def get_mode_settings(mode: "OptimizationMode | str | None") -> ModeSettings:
    return MODE_SETTINGS[parse_mode(mode)]


def get_mode_label(mode: "OptimizationMode | str") -> str:
    return MODE_LABELS[parse_mode(mode)]


def get_mode_description(mode: "OptimizationMode | str") -> str:
    return MODE_DESCRIPTIONS[parse_mode(mode)]


def calculate_seo_impact_estimate(mode: "OptimizationMode | str", issue_count: int, critical_count: int, high_count: int) -> str:
    multiplier = {
        OptimizationMode.SAFE: 0.05,
        OptimizationMode.BALANCED: 0.15,
        OptimizationMode.AGGRESSIVE: 0.30,
    }[parse_mode(mode)]
    total = min(50.0, (critical_count * 5 + high_count * 2 + issue_count) * multiplier)
    return f"+{round(total)}%"
