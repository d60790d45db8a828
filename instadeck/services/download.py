"""Resolve a device download URL to a Readeck bookmark and its article."""

from __future__ import annotations

import logging
from typing import List, Optional
from urllib.parse import urlsplit

from ..integrations.readeck import BackendError, ReadeckClient
from ..schemas import BookmarkDetail
from .content import RewrittenArticle, rewrite_images


logger = logging.getLogger(__name__)


class ArticleNotFound(LookupError):
    """No unarchived bookmark matches the requested URL."""

    def __init__(self, url: str) -> None:
        super().__init__(f"No bookmark matches {url}")
        self.url = url


def _strip_www(host: str) -> str:
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def sites_to_try(host: str) -> List[str]:
    """Candidate ``site`` filters for ``host``: the host, then its second-level label."""

    host = (host or "").strip()
    if not host:
        return []
    candidates = [host]
    labels = host.split(".")
    if len(labels) >= 2 and labels[-2]:
        candidates.append(labels[-2])
    return list(dict.fromkeys(candidates))


def _url_key(url: str):
    parts = urlsplit(url.strip())
    return parts.scheme.lower(), _strip_www(parts.hostname or ""), parts.path or "/"


def compare_urls(left: str, right: str) -> bool:
    """Same scheme, host (ignoring ``www.`` and case) and path; query and fragment ignored."""

    try:
        return _url_key(left) == _url_key(right)
    except ValueError:
        return False


async def find_bookmark(client: ReadeckClient, url: str) -> BookmarkDetail:
    """Search unarchived bookmarks site by site for one whose URL matches ``url``."""

    try:
        host = urlsplit(url).hostname or ""
    except ValueError:
        host = ""
    for site in sites_to_try(host):
        page = 1
        total_pages = 1
        while page <= total_pages:
            try:
                bookmarks, total_pages = await client.search_by_site(site, page, archived=False)
            except BackendError as exc:
                logger.warning("Search for site %s page %d failed: %s", site, page, exc)
                break
            match = _first_match(bookmarks, url)
            if match is not None:
                logger.debug("Matched %s to bookmark %s via site %s", url, match.id, site)
                return match
            page += 1
    raise ArticleNotFound(url)


def _first_match(bookmarks: List[BookmarkDetail], url: str) -> Optional[BookmarkDetail]:
    for bookmark in bookmarks:
        if bookmark.url and compare_urls(bookmark.url, url):
            return bookmark
    return None


async def download_article(client: ReadeckClient, url: str) -> RewrittenArticle:
    bookmark = await find_bookmark(client, url)
    html = await client.fetch_article_html(bookmark.id)
    return rewrite_images(html)
