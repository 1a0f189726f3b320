"""OpenAI-compatible embedding and completion client.

Both calls are latency- and cost-bearing; every request carries the
configured timeout so one hung call cannot stall a report or an ingestion item.
"""

import logging

from openai import OpenAI, OpenAIError

from .config import EmbeddingConfig, LlmConfig, Settings
from .errors import CollaboratorError

logger = logging.getLogger(__name__)


class LlmClient:
    """Thin wrapper around one OpenAI client.

    The underlying client is created lazily so a missing API key only fails
    the calls that need it, not process startup.
    """

    def __init__(
        self,
        llm_config: LlmConfig,
        embedding_config: EmbeddingConfig,
        settings: Settings,
    ) -> None:
        self.llm_config = llm_config
        self.embedding_config = embedding_config
        self._api_key = settings.openai_api_key
        self._client: OpenAI | None = None

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not self._api_key:
                raise CollaboratorError("OPENAI_API_KEY is required")
            self._client = OpenAI(
                api_key=self._api_key,
                base_url=self.llm_config.base_url,
                max_retries=self.llm_config.max_retries,
                timeout=self.llm_config.timeout,
            )
        return self._client

    def embed(self, text: str) -> list[float]:
        """Return the embedding vector for text."""
        try:
            response = self.client.embeddings.create(
                model=self.embedding_config.model,
                input=text,
                dimensions=self.embedding_config.dimensions,
            )
        except OpenAIError as exc:
            raise CollaboratorError(f"Embedding request failed: {exc}") from exc

        if not response.data:
            raise CollaboratorError("Embedding response contained no data")

        vector = list(response.data[0].embedding)
        if len(vector) != self.embedding_config.dimensions:
            raise CollaboratorError(
                f"Embedding has {len(vector)} dims, "
                f"expected {self.embedding_config.dimensions}"
            )
        return vector

    def complete(self, system: str, user: str) -> str:
        """Run one chat completion with a system and a user turn."""
        try:
            response = self.client.chat.completions.create(
                model=self.llm_config.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            )
        except OpenAIError as exc:
            raise CollaboratorError(f"Completion request failed: {exc}") from exc

        # 兼容网关可能在响应体中返回错误而非 HTTP 状态码
        error = getattr(response, "error", None)
        if error:
            err_msg = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise CollaboratorError(f"Completion provider returned error: {err_msg}")

        if not response.choices:
            logger.error("LLM returned empty choices. Raw response: %s", response.model_dump_json()[:500])
            raise CollaboratorError("LLM returned no choices")

        content = response.choices[0].message.content or ""
        if not content:
            raise CollaboratorError("LLM returned empty content")

        return content
