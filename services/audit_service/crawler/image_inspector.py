import hashlib
import io
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup
from PIL import Image, UnidentifiedImageError

from config.logging_config import get_logger
from services.audit_service.config import settings
from services.audit_service.crawler.cancellation import CancellationToken

logger = get_logger(__name__)

MAX_FILE_SIZE = 150 * 1024
MAX_WIDTH = 1200
COMPRESSION_THRESHOLD = 0.5

FORMAT_BY_EXTENSION = {
    "jpg": "jpeg",
    "jpeg": "jpeg",
    "png": "png",
    "gif": "gif",
    "webp": "webp",
    "svg": "svg",
    "avif": "avif",
}


class ImageIssueType(str, Enum):
    OVERSIZED_FILE = "oversized_file"
    PNG_SHOULD_BE_WEBP = "png_should_be_webp"
    OVERSIZED_DIMENSIONS = "oversized_dimensions"
    MISSING_ALT = "missing_alt"
    NO_LAZY_LOADING = "no_lazy_loading"
    POOR_COMPRESSION = "poor_compression"
    DUPLICATE_IMAGE = "duplicate_image"


RECOMMENDATIONS = {
    ImageIssueType.PNG_SHOULD_BE_WEBP.value: "Convert PNG to WebP for better compression",
    ImageIssueType.MISSING_ALT.value: "Add descriptive alt text for accessibility and SEO",
    ImageIssueType.NO_LAZY_LOADING.value: "Add loading='lazy' attribute",
    ImageIssueType.POOR_COMPRESSION.value: "Re-compress with better quality settings",
    ImageIssueType.DUPLICATE_IMAGE.value: "Remove duplicate image",
}


@dataclass
class ImageAsset:
    src: str
    alt: str | None = None
    width: int | None = None
    height: int | None = None
    file_size: int | None = None
    format: str | None = None
    has_lazy_loading: bool = False
    load_time_ms: int | None = None
    hash: str | None = None
    issues: list[str] = field(default_factory=list)
    recommended_action: str | None = None
    note: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImageAsset":
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        known.setdefault("src", "")
        known["issues"] = list(known.get("issues") or [])
        return cls(**known)


def _format_from_url(url: str) -> str | None:
    path = urlparse(url).path
    if "." not in path:
        return None
    return FORMAT_BY_EXTENSION.get(path.rsplit(".", 1)[-1].lower())


def _is_lazy(tag) -> bool:
    if (tag.get("loading") or "").lower() == "lazy":
        return True
    if tag.has_attr("data-src"):
        return True
    classes = tag.get("class") or []
    return "lazy" in " ".join(classes).lower()


def lazy_loading_map(page_html: str, page_url: str | None = None) -> dict[str, bool]:
    soup = BeautifulSoup(page_html, "lxml")
    result: dict[str, bool] = {}
    for img in soup.find_all("img"):
        src = img.get("src") or img.get("data-src")
        if not src:
            continue
        resolved = urljoin(page_url or "", src.strip())
        result[resolved] = result.get(resolved, False) or _is_lazy(img)
    return result


def _has_transparency(im: Image.Image) -> bool:
    if im.mode in ("RGBA", "LA", "PA"):
        return True
    return "transparency" in im.info


def _recommendation(issues: list[str], file_size: int | None, width: int | None) -> str:
    parts = []
    for tag in issues:
        if tag == ImageIssueType.OVERSIZED_FILE.value:
            parts.append(f"Compress image (currently {round((file_size or 0) / 1024)}KB)")
        elif tag == ImageIssueType.OVERSIZED_DIMENSIONS.value:
            parts.append(f"Resize image from {width}px to max {MAX_WIDTH}px")
        elif tag in RECOMMENDATIONS:
            parts.append(RECOMMENDATIONS[tag])
    return ". ".join(parts) or "Image is optimized"


def tag_image(asset: ImageAsset, is_png_without_alpha: bool = False) -> list[str]:
    """Per-image tags; duplicate detection is a separate pass over all images."""
    issues: list[str] = []
    if asset.file_size is not None and asset.file_size > MAX_FILE_SIZE:
        issues.append(ImageIssueType.OVERSIZED_FILE.value)
    if is_png_without_alpha:
        issues.append(ImageIssueType.PNG_SHOULD_BE_WEBP.value)
    if asset.width and asset.width > MAX_WIDTH:
        issues.append(ImageIssueType.OVERSIZED_DIMENSIONS.value)
    if not asset.alt or not asset.alt.strip():
        issues.append(ImageIssueType.MISSING_ALT.value)
    if not asset.has_lazy_loading:
        issues.append(ImageIssueType.NO_LAZY_LOADING.value)
    if asset.file_size and asset.width and asset.height:
        if asset.file_size / (asset.width * asset.height) > COMPRESSION_THRESHOLD:
            issues.append(ImageIssueType.POOR_COMPRESSION.value)
    return issues


async def inspect_image(
    client: httpx.AsyncClient,
    image_url: str,
    alt: str | None = None,
    page_html: str | None = None,
    page_url: str | None = None,
    has_lazy_loading: bool | None = None,
) -> ImageAsset:
    """Fetch one image once and measure it; fetch failures yield a note, not an error."""
    if has_lazy_loading is None:
        has_lazy_loading = bool(page_html) and lazy_loading_map(page_html, page_url).get(image_url, False)

    started = time.perf_counter()
    try:
        r = await client.get(image_url, timeout=settings.image_timeout_s)
    except httpx.HTTPError as e:
        logger.warning(f"Failed to fetch image {image_url}: {e}", extra={"url": image_url})
        return ImageAsset(src=image_url, alt=alt, note=f"Could not analyze: {str(e) or type(e).__name__}")

    if not r.is_success:
        return ImageAsset(src=image_url, alt=alt, note=f"Could not analyze: HTTP {r.status_code}")

    data = r.content
    asset = ImageAsset(
        src=image_url,
        alt=alt,
        file_size=len(data),
        hash=hashlib.sha256(data).hexdigest()[:16],
        has_lazy_loading=has_lazy_loading,
        load_time_ms=int((time.perf_counter() - started) * 1000),
    )

    png_without_alpha = False
    try:
        with Image.open(io.BytesIO(data)) as im:
            asset.width, asset.height = im.size
            asset.format = (im.format or "").lower() or None
            png_without_alpha = asset.format == "png" and not _has_transparency(im)
    except (UnidentifiedImageError, OSError, ValueError):
        asset.format = _format_from_url(image_url)

    asset.issues = tag_image(asset, is_png_without_alpha=png_without_alpha)
    asset.recommended_action = _recommendation(asset.issues, asset.file_size, asset.width)
    return asset


async def inspect_page_images(
    client: httpx.AsyncClient,
    page,
    max_images: int | None = None,
    cancel_token: CancellationToken | None = None,
) -> list[ImageAsset]:
    limit = max_images if max_images is not None else settings.max_images_per_page
    refs = list(page.images or [])[:limit]
    if not refs:
        return []

    lazy = lazy_loading_map(page.html, page.final_url or page.url) if page.html else {}

    assets = []
    for ref in refs:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        assets.append(await inspect_image(client, ref.src, alt=ref.alt, has_lazy_loading=lazy.get(ref.src, False)))
    return assets


def mark_duplicates(images: Iterable[ImageAsset]) -> list[ImageAsset]:
    """Tag every image whose content hash occurs more than once in ``images``.

    Must run after every image of the audit has been inspected.
    """
    images = list(images)
    counts = Counter(img.hash for img in images if img.hash)
    tag = ImageIssueType.DUPLICATE_IMAGE.value
    for img in images:
        if img.hash and counts[img.hash] > 1 and tag not in img.issues:
            img.issues.append(tag)
            img.recommended_action = _recommendation(img.issues, img.file_size, img.width)
    return images
