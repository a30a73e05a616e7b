import re
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable
from urllib.parse import urldefrag, urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from config.logging_config import get_logger
from services.audit_service.config import settings
from services.audit_service.crawler.cancellation import CancellationToken
from services.audit_service.crawler.image_inspector import ImageAsset

logger = get_logger(__name__)

NON_CONTENT_TAGS = ["script", "style", "noscript", "template"]
MAX_REDIRECTS = 5


@dataclass
class ImageRef:
    src: str
    alt: str | None = None


@dataclass
class LinkRef:
    href: str
    text: str = ""


@dataclass
class CrawledPage:
    url: str
    status_code: int = 0
    load_time_ms: int | None = None
    final_url: str | None = None
    title: str | None = None
    meta_description: str | None = None
    h1: list[str] = field(default_factory=list)
    h2: list[str] = field(default_factory=list)
    images: list[ImageRef] = field(default_factory=list)
    links: list[LinkRef] = field(default_factory=list)
    body_text: str | None = None
    error: str | None = None
    html: str | None = field(default=None, repr=False)
    images_detailed: list[ImageAsset] = field(default_factory=list)

    @property
    def fetched(self) -> bool:
        return self.body_text is not None

    def to_snapshot(self) -> dict:
        data = asdict(self)
        data.pop("html", None)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CrawledPage":
        def _str_list(value) -> list[str]:
            return [str(v) for v in (value or []) if v]

        images = []
        for img in data.get("images") or []:
            if isinstance(img, ImageRef):
                images.append(img)
            elif isinstance(img, dict) and img.get("src"):
                images.append(ImageRef(src=img["src"], alt=img.get("alt")))

        links = []
        for link in data.get("links") or []:
            if isinstance(link, LinkRef):
                links.append(link)
            elif isinstance(link, dict) and link.get("href"):
                links.append(LinkRef(href=link["href"], text=link.get("text") or ""))
            elif isinstance(link, str):
                links.append(LinkRef(href=link))

        detailed = []
        for img in data.get("images_detailed") or []:
            detailed.append(img if isinstance(img, ImageAsset) else ImageAsset.from_dict(img))

        status = data.get("status_code")
        return cls(
            url=data.get("url") or "",
            status_code=int(status) if status is not None else 0,
            load_time_ms=data.get("load_time_ms"),
            final_url=data.get("final_url"),
            title=data.get("title"),
            meta_description=data.get("meta_description"),
            h1=_str_list(data.get("h1")),
            h2=_str_list(data.get("h2")),
            images=images,
            links=links,
            body_text=data.get("body_text"),
            error=data.get("error"),
            images_detailed=detailed,
        )


def _normalize_url(base: str, href: str | None) -> str | None:
    if not href:
        return None
    href = href.strip()
    if href.startswith(("mailto:", "tel:", "javascript:", "data:")):
        return None
    u = urljoin(base, href)
    u, _ = urldefrag(u)
    p = urlparse(u)
    if p.scheme not in ("http", "https") or not p.hostname:
        return None
    if not p.path:
        u = p._replace(path="/").geturl()
    return u


def _hostname(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


def _extract_page(html: str, page_url: str, body_text_limit: int) -> dict[str, Any]:
    soup = BeautifulSoup(html, "lxml")

    title = None
    if soup.title is not None:
        title = soup.title.get_text(strip=True) or None

    description = None
    m = soup.find("meta", attrs={"name": re.compile(r"^description$", re.I)})
    if m and m.get("content"):
        description = m["content"].strip() or None

    h1 = [h.get_text(" ", strip=True) for h in soup.find_all("h1")]
    h2 = [h.get_text(" ", strip=True) for h in soup.find_all("h2")]

    images: list[ImageRef] = []
    for img in soup.find_all("img"):
        src = _normalize_url(page_url, img.get("src") or img.get("data-src"))
        if src:
            images.append(ImageRef(src=src, alt=img.get("alt")))

    links: list[LinkRef] = []
    for a in soup.find_all("a", href=True):
        href = _normalize_url(page_url, a.get("href"))
        if href:
            links.append(LinkRef(href=href, text=a.get_text(" ", strip=True)))

    for tag in soup(NON_CONTENT_TAGS):
        tag.decompose()
    body = soup.body or soup
    body_text = " ".join(body.get_text(" ").split())[:body_text_limit]

    return {
        "title": title,
        "meta_description": description,
        "h1": [t for t in h1 if t],
        "h2": [t for t in h2 if t],
        "images": images,
        "links": links,
        "body_text": body_text,
    }


def _is_html(response: httpx.Response) -> bool:
    content_type = response.headers.get("content-type", "")
    return not content_type or "html" in content_type.lower()


async def crawl_page(client: httpx.AsyncClient, url: str, timeout_s: float | None = None, body_text_limit: int | None = None) -> CrawledPage:
    """Fetch one page once; never raises for network or HTTP failures.

    Redirects are not followed: a 3xx comes back as a record with
    ``error="redirect"`` and the resolved ``Location`` in ``final_url``.
    """
    limit = body_text_limit if body_text_limit is not None else settings.body_text_limit
    started = time.perf_counter()
    try:
        r = await client.get(url, timeout=timeout_s or settings.page_timeout_s, follow_redirects=False)
    except httpx.TimeoutException:
        elapsed = int((time.perf_counter() - started) * 1000)
        logger.warning(f"Timeout fetching {url}", extra={"url": url})
        return CrawledPage(url=url, status_code=0, load_time_ms=elapsed, error="timeout")
    except httpx.HTTPError as e:
        elapsed = int((time.perf_counter() - started) * 1000)
        logger.warning(f"Failed to fetch {url}: {e}", extra={"url": url})
        return CrawledPage(url=url, status_code=0, load_time_ms=elapsed, error=str(e) or type(e).__name__)

    elapsed = int((time.perf_counter() - started) * 1000)
    final_url = str(r.url)

    if r.is_redirect:
        location = _normalize_url(final_url, r.headers.get("location"))
        return CrawledPage(url=url, status_code=r.status_code, load_time_ms=elapsed, final_url=location, error="redirect")

    if not 200 <= r.status_code < 300:
        return CrawledPage(url=url, status_code=r.status_code, load_time_ms=elapsed, final_url=final_url, error=f"http_{r.status_code}")

    if not _is_html(r):
        return CrawledPage(url=url, status_code=r.status_code, load_time_ms=elapsed, final_url=final_url, error="not_html")

    html = r.text
    extracted = _extract_page(html, final_url, limit)
    return CrawledPage(url=url, status_code=r.status_code, load_time_ms=elapsed, final_url=final_url, html=html, **extracted)


async def _fetch_on_host(
    client: httpx.AsyncClient,
    url: str,
    host: str,
    seen: set[str],
    timeout_s: float | None,
    cancel_token: CancellationToken | None,
) -> CrawledPage | None:
    """Fetch ``url``, following redirects only to same-host URLs not yet seen.

    Returns None when the redirect chain leaves the host or lands on a URL
    that is already queued or visited.
    """
    target = url
    for _ in range(MAX_REDIRECTS + 1):
        page = await crawl_page(client, target, timeout_s=timeout_s)
        if page.error != "redirect":
            if target != url:
                page.url = url
                page.final_url = target
            return page

        location = page.final_url
        if location is None or _hostname(location) != host or location in seen:
            logger.info(f"Skipping redirect {target} -> {location}", extra={"url": url, "location": location})
            return None
        seen.add(location)
        target = location
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

    logger.warning(f"Too many redirects for {url}", extra={"url": url})
    return CrawledPage(url=url, status_code=page.status_code, load_time_ms=page.load_time_ms, final_url=target, error="too_many_redirects")


async def crawl_site(
    seed_url: str,
    max_pages: int | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    timeout_s: float | None = None,
    cancel_token: CancellationToken | None = None,
    on_page: Callable[[CrawledPage, int], Awaitable[None]] | None = None,
) -> list[CrawledPage]:
    """Breadth-first crawl restricted to the seed's hostname.

    Links are resolved against the page they appear on and deduplicated by
    absolute URL before being queued, so no URL is fetched twice. Redirect
    targets go through the same host and dedupe checks. Stops when the
    frontier is empty or ``max_pages`` pages have been visited.
    """
    limit = max_pages if max_pages is not None else settings.max_pages
    seed = _normalize_url(seed_url, seed_url)
    if seed is None:
        raise ValueError(f"invalid_url: {seed_url}")
    host = _hostname(seed)

    queue: deque[str] = deque([seed])
    seen: set[str] = {seed}
    pages: list[CrawledPage] = []

    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(
            headers={"User-Agent": settings.user_agent, "Accept": "text/html,application/xhtml+xml"},
            timeout=timeout_s or settings.page_timeout_s,
        )

    try:
        while queue and len(pages) < limit:
            url = queue.popleft()
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            page = await _fetch_on_host(client, url, host, seen, timeout_s, cancel_token)
            if page is None:
                if url == seed:
                    page = CrawledPage(url=url, error="offsite_redirect")
                else:
                    continue
            pages.append(page)

            for link in page.links:
                if link.href in seen or _hostname(link.href) != host:
                    continue
                seen.add(link.href)
                queue.append(link.href)

            if on_page is not None:
                await on_page(page, len(pages))
    finally:
        if own_client:
            await client.aclose()

    logger.info(
        f"Crawl of {seed} finished: {len(pages)} pages",
        extra={"seed_url": seed, "pages": len(pages), "frontier_left": len(queue)},
    )
    return pages
