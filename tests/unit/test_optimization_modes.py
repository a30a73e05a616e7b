import pytest

from services.management_service.optimization_modes import (
    MODE_SETTINGS,
    OptimizationMode,
    calculate_seo_impact_estimate,
    get_mode_label,
    get_mode_settings,
    parse_mode,
)


def test_parse_mode():
    assert parse_mode("SAFE") == OptimizationMode.SAFE
    assert parse_mode(" aggressive ") == OptimizationMode.AGGRESSIVE
    assert parse_mode(None) == OptimizationMode.BALANCED
    assert parse_mode(OptimizationMode.SAFE) is OptimizationMode.SAFE
    with pytest.raises(ValueError):
        parse_mode("reckless")


def test_thresholds_loosen_with_boldness():
    safe, balanced, aggressive = (MODE_SETTINGS[m] for m in OptimizationMode)
    assert safe.auto_apply_threshold == 0.90
    assert balanced.auto_apply_threshold == 0.80
    assert aggressive.auto_apply_threshold == 0.70
    assert safe.title.max_length_change < balanced.title.max_length_change < aggressive.title.max_length_change
    assert safe.internal_links.max_new_links < aggressive.internal_links.max_new_links
    assert safe.images.format_conversion is False


def test_mode_lookup_helpers():
    assert get_mode_settings("safe").risk_tolerance == "low"
    assert get_mode_label("balanced") == "Balanced"


def test_impact_estimate_scales_and_caps():
    assert calculate_seo_impact_estimate("safe", 10, 1, 2) == "+1%"
    assert calculate_seo_impact_estimate("aggressive", 10, 1, 2) == "+6%"
    assert calculate_seo_impact_estimate("aggressive", 500, 50, 50) == "+50%"
