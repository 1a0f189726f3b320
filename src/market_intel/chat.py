"""News-grounded chat: latest headlines as context, one completion per message."""

import logging
from collections.abc import Callable

from sqlalchemy.exc import SQLAlchemyError

from .errors import ChatError
from .models import StoredNews
from .store import NewsStore

logger = logging.getLogger(__name__)

Completer = Callable[[str, str], str]

_CHAT_SYSTEM_PROMPT = """\
You are APA INTEL, an Australian financial expert.
Use the following recent news to answer the user's query.
If the information isn't in the context, say you don't have data on that yet.

CONTEXT:
{context}"""


def format_context(news: list[StoredNews]) -> str:
    """Render items as ``[source - timestamp]: content`` lines."""
    return "\n".join(
        f"[{item.source} - {item.created_at.isoformat()}]: {item.content}" for item in news
    )


class ChatService:
    """Stateless: every call reads fresh context and makes one completion."""

    def __init__(self, news_store: NewsStore, complete: Completer, context_items: int = 10) -> None:
        self.news_store = news_store
        self.complete = complete
        self.context_items = context_items

    def answer(self, message: str) -> str:
        if not message or not message.strip():
            raise ValueError("message must not be empty")

        try:
            news = self.news_store.query_latest(self.context_items)
        except SQLAlchemyError as exc:
            raise ChatError(f"Could not load chat context: {exc}") from exc
        system = _CHAT_SYSTEM_PROMPT.format(context=format_context(news))
        try:
            return self.complete(system, message)
        except Exception as exc:
            logger.exception("Chat completion failed")
            raise ChatError(f"Chat completion failed: {exc}") from exc
