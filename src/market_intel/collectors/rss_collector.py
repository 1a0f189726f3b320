"""RSS / Atom feed collector.

使用 httpx 获取内容 + feedparser 解析，兼容非标准 RSS/Atom。
"""

import logging

import feedparser
import httpx

from ..config import FeedConfig
from ..models import RawFeedItem
from .base import BaseCollector

logger = logging.getLogger(__name__)

_HTTP_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; market-intel/0.1)",
    "Accept": "application/rss+xml, application/atom+xml, application/xml, text/xml, */*",
}


def _fetch_and_parse(url: str, client: httpx.Client) -> feedparser.FeedParserDict:
    """Fetch RSS content via httpx, then parse with feedparser.

    Finance sites often block feedparser's default user-agent. Fetching with
    httpx first (browser-like UA) gives us the raw bytes, which feedparser
    can often still handle even if the XML is slightly broken.
    """
    resp = client.get(url)
    resp.raise_for_status()
    return feedparser.parse(resp.content)


def _entry_to_item(entry: dict) -> RawFeedItem:
    title = (entry.get("title") or "").strip() or "Market Update"
    link = (entry.get("link") or "").strip() or "#"
    description = (entry.get("summary") or entry.get("description") or "").strip()
    return RawFeedItem(title=title, link=link, description=description)


class RssCollector(BaseCollector):
    """Generic RSS collector; one shared httpx client per collector."""

    name = "rss"

    def __init__(
        self,
        limit: int = 5,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.limit = limit
        self._client = client or httpx.Client(
            timeout=timeout,
            headers=_HTTP_HEADERS,
            follow_redirects=True,
        )

    def collect(self, feed: FeedConfig) -> list[RawFeedItem]:
        logger.info("Fetching RSS: %s (%s)", feed.name, feed.url)
        parsed = _fetch_and_parse(feed.url, self._client)

        if parsed.bozo and not parsed.entries:
            logger.warning(
                "Failed to parse RSS for %s: %s",
                feed.name,
                parsed.bozo_exception,
            )
            return []

        items = [_entry_to_item(entry) for entry in parsed.entries[: self.limit]]
        logger.info("%s: %d items", feed.name, len(items))
        return items

    def close(self) -> None:
        self._client.close()
