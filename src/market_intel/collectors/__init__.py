"""Feed collectors.

Collector registry — maps FeedConfig.kind to collector classes.
新增 collector 只需：1) 写 collector 文件  2) 在此注册  3) 在 config.yaml 中设置 kind。
"""

from .base import BaseCollector
from .rss_collector import RssCollector

# Collector registry: kind -> class
# collector 注册表：类型 -> 类
REGISTRY: dict[str, type[BaseCollector]] = {
    "rss": RssCollector,
}

__all__ = [
    "BaseCollector",
    "REGISTRY",
    "RssCollector",
]
