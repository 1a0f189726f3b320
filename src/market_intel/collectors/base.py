"""Base collector abstract class.

所有 collector 的统一基类，提供标准化接口和注册机制。
All collectors inherit from BaseCollector for a unified interface.
"""

import logging
from abc import ABC, abstractmethod

from ..config import FeedConfig
from ..models import RawFeedItem

logger = logging.getLogger(__name__)


class BaseCollector(ABC):
    """Abstract base class for feed collectors.

    每个 collector 继承此基类，配置通过 __init__ 注入。
    统一接口：collect(feed) -> list[RawFeedItem]。
    """

    name: str = ""  # registry key, matches FeedConfig.kind

    @abstractmethod
    def collect(self, feed: FeedConfig) -> list[RawFeedItem]:
        """Fetch one feed and return its newest entries, in feed order.

        Malformed documents yield an empty list; transport errors propagate
        so the caller can count the feed as failed.
        """
        ...

    def close(self) -> None:
        """Release any held connections."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
