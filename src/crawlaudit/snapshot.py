"""Offline snapshots of rendered pages for accessibility analysis.

A snapshot is a self-contained directory that a renderer can reload from
``file://`` without touching the live site:

    <snapshot dir>/
    ├── index.html     rendered DOM, scripts removed, one stylesheet link
    ├── styles.css     every stylesheet of the page, in cascade order
    └── images/        local copies of <img> sources
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from crawlaudit.browser_config import get_random_user_agent
from crawlaudit.constants import SNAPSHOT_ASSET_DENYLIST, SNAPSHOT_ASSET_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

STYLESHEET_NAME = "styles.css"
IMAGES_DIR_NAME = "images"

# Stylesheets in document order; inline sheets carry their text
_COLLECT_STYLESHEETS_JS = """
() => Array.from(document.styleSheets).map(sheet => {
    let href = null;
    try { href = sheet.href; } catch (e) {}
    const node = sheet.ownerNode;
    return { href: href, text: href ? null : ((node && node.textContent) || '') };
})
"""

# The URL the browser actually loaded, keyed by the attributes that chose it
_COLLECT_IMAGES_JS = """
() => Array.from(document.images).map(img => ({
    src: img.getAttribute('src'),
    srcset: img.getAttribute('srcset'),
    url: img.currentSrc || img.src,
})).filter(image => image.url)
"""

_CSS_URL_RE = re.compile(r"""url\(\s*(['"]?)(?!data:|#)([^'")]+)\1\s*\)""", re.IGNORECASE)
_CSS_IMPORT_RE = re.compile(r"""@import\s+(['"])([^'"]+)\1""", re.IGNORECASE)

_IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".avif", ".bmp", ".ico"}


def is_denied_asset(url: str, denylist=SNAPSHOT_ASSET_DENYLIST) -> bool:
    """Whether an asset URL matches a known-broken pattern."""
    try:
        path = urlparse(url).path
    except ValueError:
        return True
    return any(pattern in path for pattern in denylist)


def absolutize_css_urls(css: str, base_url: str) -> str:
    """Rewrite relative url(...) and @import references against ``base_url``.

    Combined stylesheets live next to index.html, not at their original
    location, so relative references would otherwise break.
    """
    def _url(match: re.Match) -> str:
        quote, target = match.group(1), match.group(2).strip()
        return f"url({quote}{urljoin(base_url, target)}{quote})"

    def _import(match: re.Match) -> str:
        quote, target = match.group(1), match.group(2)
        return f"@import {quote}{urljoin(base_url, target)}{quote}"

    css = _CSS_URL_RE.sub(_url, css)
    return _CSS_IMPORT_RE.sub(_import, css)


@dataclass
class Snapshot:
    """Result of building a snapshot."""

    directory: Path
    index_path: Path
    source_url: str
    stylesheets: int = 0
    images: int = 0
    skipped: list[str] = field(default_factory=list)

    @property
    def file_url(self) -> str:
        return self.index_path.resolve().as_uri()


def _image_key(src: Optional[str], srcset: Optional[str]) -> tuple:
    return ((src or "").strip(), (srcset or "").strip())


class SnapshotBuilder:
    """Builds offline snapshots of rendered pages."""

    def __init__(
        self,
        denylist=SNAPSHOT_ASSET_DENYLIST,
        timeout: float = SNAPSHOT_ASSET_TIMEOUT_SECONDS,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            denylist: Asset URL fragments that are never downloaded
            timeout: Per-asset download timeout in seconds
            user_agent: User agent for asset downloads (rotated if None)
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.denylist = tuple(denylist)
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport

    async def build(self, page, directory: Path) -> Snapshot:
        """Serialize ``page`` into ``directory``.

        Args:
            page: Loaded Playwright page
            directory: Empty directory that receives the snapshot

        Returns:
            Snapshot describing what was written
        """
        page_url = page.url
        html = await page.content()
        sheets = await page.evaluate(_COLLECT_STYLESHEETS_JS) or []
        images = await page.evaluate(_COLLECT_IMAGES_JS) or []
        loaded = {_image_key(i.get("src"), i.get("srcset")): i["url"] for i in images}

        snapshot = Snapshot(
            directory=directory,
            index_path=directory / "index.html",
            source_url=page_url,
        )

        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            verify=False,
            headers={"User-Agent": self.user_agent or get_random_user_agent()},
            transport=self._transport,
        ) as client:
            css = await self._collect_css(client, sheets, page_url, snapshot)
            image_map = await self._download_images(
                client, list(loaded.values()), directory, snapshot
            )

        (directory / STYLESHEET_NAME).write_text(css, encoding="utf-8")
        snapshot.index_path.write_text(
            self._rewrite_html(html, page_url, image_map, loaded), encoding="utf-8"
        )

        logger.debug(
            f"Snapshot of {page_url}: {snapshot.stylesheets} stylesheet(s), "
            f"{snapshot.images} image(s), {len(snapshot.skipped)} skipped"
        )
        return snapshot

    async def _collect_css(self, client: httpx.AsyncClient, sheets: list, page_url: str, snapshot: Snapshot) -> str:
        parts = []
        for sheet in sheets:
            href = sheet.get("href")
            if not href:
                text = sheet.get("text") or ""
                if text.strip():
                    parts.append(absolutize_css_urls(text, page_url))
                    snapshot.stylesheets += 1
                continue

            if is_denied_asset(href, self.denylist):
                snapshot.skipped.append(href)
                continue

            try:
                response = await client.get(href)
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.warning(f"Error saving CSS file {href}: {e}")
                snapshot.skipped.append(href)
                continue

            parts.append(f"/* {href} */\n" + absolutize_css_urls(response.text, href))
            snapshot.stylesheets += 1

        return "\n\n".join(parts)

    async def _download_images(
        self, client: httpx.AsyncClient, image_urls: list, directory: Path, snapshot: Snapshot
    ) -> dict[str, str]:
        """Download images; returns original absolute URL -> relative local path."""
        image_map: dict[str, str] = {}
        images_dir = directory / IMAGES_DIR_NAME

        for url in dict.fromkeys(image_urls):
            if url.startswith("data:") or url in image_map:
                continue
            if is_denied_asset(url, self.denylist):
                snapshot.skipped.append(url)
                continue

            try:
                response = await client.get(url)
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.warning(f"Error saving image {url}: {e}")
                snapshot.skipped.append(url)
                continue

            suffix = PurePosixPath(urlparse(url).path).suffix.lower()
            if suffix not in _IMAGE_EXTENSIONS:
                suffix = ""
            name = hashlib.md5(url.encode("utf-8")).hexdigest() + suffix

            images_dir.mkdir(exist_ok=True)
            (images_dir / name).write_bytes(response.content)
            image_map[url] = f"{IMAGES_DIR_NAME}/{name}"
            snapshot.images += 1

        return image_map

    def _rewrite_html(
        self, html: str, page_url: str, image_map: dict[str, str], loaded: dict[tuple, str]
    ) -> str:
        soup = BeautifulSoup(html, "html.parser")

        # Scripts would re-run against the snapshot and mutate the settled DOM
        for tag in soup.find_all(["script", "base"]):
            tag.decompose()

        for tag in soup.find_all("style"):
            tag.decompose()
        for tag in soup.find_all("link"):
            rel = [r.lower() for r in (tag.get("rel") or [])]
            if "stylesheet" in rel:
                tag.decompose()

        for img in soup.find_all("img"):
            src = img.get("src")
            url = loaded.get(_image_key(src, img.get("srcset")))
            if url is None and src:
                url = urljoin(page_url, src)
            local = image_map.get(url) if url else None
            if local:
                img["src"] = local
                if img.has_attr("srcset"):
                    del img["srcset"]

        head = soup.head
        if head is None:
            head = soup.new_tag("head")
            if soup.html is not None:
                soup.html.insert(0, head)
            else:
                soup.insert(0, head)
        head.append(soup.new_tag("link", rel="stylesheet", href=STYLESHEET_NAME))

        return str(soup)
