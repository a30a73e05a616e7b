from typing import Iterable

from services.audit_service.analyzers.findings import RiskLevel, SEOIssue, Severity
from services.audit_service.crawler.image_inspector import MAX_FILE_SIZE, MAX_WIDTH, ImageAsset, ImageIssueType

LAZY_LOADING_MIN_IMAGES = 3
LAZY_LOADING_HIGH_IMAGES = 8
MANY_OVERSIZED_FILES = 3


def _plural(n: int) -> str:
    return "s" if n != 1 else ""


def _with_tag(images: Iterable[ImageAsset], tag: ImageIssueType) -> list[ImageAsset]:
    return [img for img in images if tag.value in img.issues]


def check_images(images: list[ImageAsset], page_url: str) -> list[SEOIssue]:
    """Aggregate per-image tags into page-level issues.

    Missing alt text is reported by the page-level alt rule, which sees every
    image reference rather than only the inspected ones.
    """
    issues: list[SEOIssue] = []

    oversized = _with_tag(images, ImageIssueType.OVERSIZED_FILE)
    if oversized:
        total = sum(img.file_size or 0 for img in oversized)
        issues.append(SEOIssue(
            type="oversized_images",
            category="Performance",
            title=f"{len(oversized)} Oversized Image{_plural(len(oversized))}",
            description=f"Found {len(oversized)} image(s) over {MAX_FILE_SIZE // 1024}KB. Large images slow down page loading.",
            severity=Severity.CRITICAL.value if len(oversized) > MANY_OVERSIZED_FILES else Severity.HIGH.value,
            risk_level=RiskLevel.LOW.value,
            page_url=page_url,
            auto_fixable=True,
            current_value=f"{round(total / 1024)}KB total",
            suggested_value=f"Compress images to under {MAX_FILE_SIZE // 1024}KB each",
        ))

    png = _with_tag(images, ImageIssueType.PNG_SHOULD_BE_WEBP)
    if png:
        issues.append(SEOIssue(
            type="png_to_webp",
            category="Performance",
            title=f"{len(png)} PNG Image{_plural(len(png))} Should Be WebP",
            description="Non-transparent PNG images can be converted to WebP for 25-50% smaller file sizes.",
            severity=Severity.MEDIUM.value,
            risk_level=RiskLevel.LOW.value,
            page_url=page_url,
            auto_fixable=True,
            current_value=f"{len(png)} PNG images without transparency",
            suggested_value="Convert to WebP format",
        ))

    wide = _with_tag(images, ImageIssueType.OVERSIZED_DIMENSIONS)
    if wide:
        issues.append(SEOIssue(
            type="oversized_dimensions",
            category="Performance",
            title=f"{len(wide)} Image{_plural(len(wide))} Too Large",
            description=f"Images wider than {MAX_WIDTH}px are likely larger than needed for most displays.",
            severity=Severity.MEDIUM.value,
            risk_level=RiskLevel.LOW.value,
            page_url=page_url,
            auto_fixable=True,
            current_value=f"{len(wide)} images over {MAX_WIDTH}px wide",
            suggested_value=f"Resize to maximum {MAX_WIDTH}px width",
        ))

    not_lazy = _with_tag(images, ImageIssueType.NO_LAZY_LOADING)
    if len(not_lazy) > LAZY_LOADING_MIN_IMAGES:
        issues.append(SEOIssue(
            type="missing_lazy_loading",
            category="Performance",
            title=f"{len(not_lazy)} Images Without Lazy Loading",
            description="Images below the fold should use lazy loading to improve initial page load time.",
            severity=Severity.HIGH.value if len(not_lazy) > LAZY_LOADING_HIGH_IMAGES else Severity.MEDIUM.value,
            risk_level=RiskLevel.LOW.value,
            page_url=page_url,
            auto_fixable=True,
            current_value=f"{len(not_lazy)} images without loading='lazy'",
            suggested_value="Add loading='lazy' attribute",
        ))

    duplicates = _with_tag(images, ImageIssueType.DUPLICATE_IMAGE)
    if duplicates:
        issues.append(SEOIssue(
            type="duplicate_images",
            category="Performance",
            title=f"{len(duplicates)} Duplicate Image{_plural(len(duplicates))} Found",
            description="The same image is loaded multiple times. Consider using a single instance.",
            severity=Severity.LOW.value,
            risk_level=RiskLevel.LOW.value,
            page_url=page_url,
            auto_fixable=False,
            current_value=f"{len(duplicates)} duplicate images",
            suggested_value="Remove duplicate image references",
        ))

    poor = _with_tag(images, ImageIssueType.POOR_COMPRESSION)
    if poor:
        issues.append(SEOIssue(
            type="poor_compression",
            category="Performance",
            title=f"{len(poor)} Image{_plural(len(poor))} Poorly Compressed",
            description="These images have higher than expected bytes per pixel, suggesting poor compression.",
            severity=Severity.MEDIUM.value,
            risk_level=RiskLevel.LOW.value,
            page_url=page_url,
            auto_fixable=True,
            current_value=f"{len(poor)} images with poor compression",
            suggested_value="Re-compress with optimal quality settings",
        ))

    return issues


def generate_image_report(pages) -> dict:
    images = [img for page in pages for img in (page.images_detailed or [])]

    breakdown = {tag.value: 0 for tag in ImageIssueType}
    with_issues = 0
    original_size = 0
    for img in images:
        original_size += img.file_size or 0
        if img.issues:
            with_issues += 1
            for tag in img.issues:
                breakdown[tag] = breakdown.get(tag, 0) + 1

    savings_percent = min(50.0, with_issues / len(images) * 40) if with_issues else 0.0
    optimized_size = round(original_size * (1 - savings_percent / 100))

    return {
        "total_images": len(images),
        "images_with_issues": with_issues,
        "total_original_size": original_size,
        "total_optimized_size": optimized_size,
        "total_saved_bytes": original_size - optimized_size,
        "average_savings_percent": round(savings_percent),
        "issue_breakdown": breakdown,
    }
