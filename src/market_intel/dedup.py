"""Dedup key derivation.

去重 key：优先使用标准化后的链接；链接缺失时退回到内容哈希。
The store enforces uniqueness on this key, so re-ingesting the same article
(same feed, a later run, or a redelivered trigger) never adds a second row.
"""

import hashlib
import logging
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

logger = logging.getLogger(__name__)

# Feeds that omit <link> get this placeholder from the collector
_MISSING_LINKS = frozenset({"", "#"})

# Tracking/analytics query params to strip
# 需要去除的追踪/分析参数
_TRACKING_PARAMS = frozenset({
    "utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term",
    "ref", "fbclid", "gclid", "mc_cid", "mc_eid", ".tsrc", "guccounter",
})


def normalize_url(url: str) -> str:
    """Normalize URL for comparison.

    标准化 URL：统一协议、去 www、去尾斜杠、去追踪参数、去 fragment。
    """
    url = url.strip()
    if not url:
        return url

    parsed = urlparse(url)

    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]

    # Keep non-standard port / 保留非标端口
    port = parsed.port
    netloc = host
    if port and port not in (80, 443):
        netloc = f"{host}:{port}"

    path = parsed.path.rstrip("/")

    if parsed.query:
        params = parse_qs(parsed.query, keep_blank_values=True)
        filtered = {
            k: v for k, v in sorted(params.items())
            if k.lower() not in _TRACKING_PARAMS
        }
        query = urlencode(filtered, doseq=True) if filtered else ""
    else:
        query = ""

    return urlunparse(("https", netloc, path, "", query, ""))


def content_key(source: str, content: str) -> str:
    """Stable key for items without a usable link."""
    digest = hashlib.sha256(f"{source}\n{content}".encode("utf-8")).hexdigest()
    return f"content:{digest}"


def dedup_key(link: str, source: str, content: str) -> str:
    """Return the uniqueness key stored alongside a news item."""
    if link.strip() in _MISSING_LINKS:
        logger.debug("No link for item from %s, using content hash", source)
        return content_key(source, content)
    return normalize_url(link)
