import httpx
import pytest
import respx

from services.audit_service.analyzers.image_checker import generate_image_report
from services.audit_service.crawler.image_inspector import (
    ImageAsset,
    inspect_image,
    inspect_page_images,
    lazy_loading_map,
    mark_duplicates,
    tag_image,
)
from services.audit_service.crawler.site_crawler import CrawledPage, ImageRef

from .helpers import make_image


@pytest.mark.asyncio
async def test_opaque_png_should_be_webp():
    data = make_image("PNG", size=(40, 40))
    with respx.mock:
        respx.get("https://example.com/logo.png").respond(200, content=data, headers={"content-type": "image/png"})
        async with httpx.AsyncClient() as client:
            asset = await inspect_image(client, "https://example.com/logo.png")

    assert asset.format == "png"
    assert (asset.width, asset.height) == (40, 40)
    assert asset.file_size == len(data)
    assert "png_should_be_webp" in asset.issues
    assert "missing_alt" in asset.issues
    assert "no_lazy_loading" in asset.issues
    assert asset.hash


@pytest.mark.asyncio
async def test_transparent_wide_png():
    data = make_image("PNG", size=(1300, 20), mode="RGBA")
    with respx.mock:
        respx.get("https://example.com/banner.png").respond(200, content=data)
        async with httpx.AsyncClient() as client:
            asset = await inspect_image(client, "https://example.com/banner.png", alt="Banner", has_lazy_loading=True)

    assert "png_should_be_webp" not in asset.issues
    assert "oversized_dimensions" in asset.issues
    assert "missing_alt" not in asset.issues
    assert "Resize image from 1300px to max 1200px" in asset.recommended_action


@pytest.mark.asyncio
async def test_optimized_jpeg_has_no_tags():
    data = make_image("JPEG", size=(300, 300))
    page_html = '<img src="/p.jpg" loading="lazy" alt="Photo">'
    with respx.mock:
        respx.get("https://example.com/p.jpg").respond(200, content=data)
        async with httpx.AsyncClient() as client:
            asset = await inspect_image(
                client, "https://example.com/p.jpg", alt="Photo", page_html=page_html, page_url="https://example.com/"
            )

    assert asset.format == "jpeg"
    assert asset.has_lazy_loading is True
    assert asset.issues == []
    assert asset.recommended_action == "Image is optimized"


@pytest.mark.asyncio
async def test_fetch_failure_yields_note():
    with respx.mock:
        respx.get("https://example.com/missing.jpg").respond(404)
        respx.get("https://example.com/down.jpg").mock(side_effect=httpx.ConnectError("refused"))
        async with httpx.AsyncClient() as client:
            missing = await inspect_image(client, "https://example.com/missing.jpg", alt="x")
            down = await inspect_image(client, "https://example.com/down.jpg")

    assert missing.note == "Could not analyze: HTTP 404"
    assert missing.issues == []
    assert missing.file_size is None
    assert down.note == "Could not analyze: refused"


@pytest.mark.asyncio
async def test_undecodable_bytes_fall_back_to_extension():
    with respx.mock:
        respx.get("https://example.com/icon.svg").respond(200, content=b"<svg xmlns='http://www.w3.org/2000/svg'/>")
        async with httpx.AsyncClient() as client:
            asset = await inspect_image(client, "https://example.com/icon.svg", alt="Icon")

    assert asset.format == "svg"
    assert asset.width is None


@pytest.mark.asyncio
async def test_page_images_are_capped_and_use_lazy_attributes():
    data = make_image("JPEG", size=(100, 100))
    page = CrawledPage(
        url="https://example.com/",
        status_code=200,
        body_text="",
        html='<img src="/a.jpg" loading="lazy"><img src="/b.jpg"><img src="/c.jpg">',
        images=[ImageRef(src=f"https://example.com/{n}.jpg", alt="x") for n in "abc"],
    )
    with respx.mock(assert_all_called=False) as router:
        router.get(url__regex=r"https://example.com/[abc]\.jpg").respond(200, content=data)
        async with httpx.AsyncClient() as client:
            assets = await inspect_page_images(client, page, max_images=2)

    assert [a.src for a in assets] == ["https://example.com/a.jpg", "https://example.com/b.jpg"]
    assert assets[0].has_lazy_loading is True
    assert assets[1].has_lazy_loading is False


def test_mark_duplicates_tags_every_copy():
    images = [
        ImageAsset(src="https://example.com/a.jpg", hash="abc", issues=[]),
        ImageAsset(src="https://example.com/b.jpg", hash="abc", issues=[]),
        ImageAsset(src="https://example.com/c.jpg", hash="def", issues=[]),
        ImageAsset(src="https://example.com/d.jpg", note="Could not analyze: HTTP 500"),
    ]
    mark_duplicates(images)
    mark_duplicates(images)

    assert images[0].issues == ["duplicate_image"]
    assert images[1].issues == ["duplicate_image"]
    assert images[2].issues == []
    assert images[3].issues == []


def test_tag_image_thresholds():
    big = ImageAsset(src="x", alt="a", file_size=200 * 1024, width=2000, height=1000, has_lazy_loading=True)
    assert tag_image(big) == ["oversized_file", "oversized_dimensions"]

    dense = ImageAsset(src="x", alt="a", file_size=1000, width=10, height=10, has_lazy_loading=True)
    assert tag_image(dense) == ["poor_compression"]


def test_lazy_loading_map_detects_variants():
    html = (
        '<img src="/a.jpg" loading="lazy"><img data-src="/b.jpg">'
        '<img src="/c.jpg" class="img lazyload"><img src="/d.jpg">'
    )
    result = lazy_loading_map(html, "https://example.com/")
    assert result == {
        "https://example.com/a.jpg": True,
        "https://example.com/b.jpg": True,
        "https://example.com/c.jpg": True,
        "https://example.com/d.jpg": False,
    }


def test_image_report():
    page = CrawledPage(
        url="https://example.com/",
        images_detailed=[
            ImageAsset(src="a", file_size=1000, issues=["no_lazy_loading"]),
            ImageAsset(src="b", file_size=1000, issues=[]),
        ],
    )
    report = generate_image_report([page])
    assert report["total_images"] == 2
    assert report["images_with_issues"] == 1
    assert report["average_savings_percent"] == 20
    assert report["total_saved_bytes"] == 400
    assert report["issue_breakdown"]["no_lazy_loading"] == 1
