from __future__ import annotations

import logging

import requests

from modules.core.errors import ProviderError
from modules.core.interfaces import AnswerProvider
from modules.core.schemas import AnswerResult

logger = logging.getLogger(__name__)


class RagServiceProvider(AnswerProvider):
    """Client for the retrieval-augmented answer service.

    The service owns embedding, vector search, ranking and prompting; this side
    only posts ``{"query": ...}`` and expects ``{"answer", "metadata"}`` back.
    """

    name = "rag_http"

    def __init__(self, endpoint: str, api_key: str = "", timeout_s: float = 60.0):
        self.endpoint = endpoint
        self.api_key = (api_key or "").strip()
        self.timeout_s = timeout_s

    @property
    def configured(self) -> bool:
        return bool(self.endpoint)

    def answer(self, query: str) -> AnswerResult:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        logger.info("RAG request: endpoint=%s query=%s", self.endpoint, (query or "")[:120])
        try:
            response = requests.post(
                self.endpoint,
                headers=headers,
                json={"query": query},
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            logger.exception("RAG HTTP request failed: endpoint=%s", self.endpoint)
            raise ProviderError("answer", str(exc)) from exc

        if not response.ok:
            logger.error(
                "RAG HTTP status error: status=%s body=%s",
                response.status_code,
                (response.text or "")[:500],
            )
            raise ProviderError("answer", "answer request rejected", status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            logger.exception("RAG JSON decode failed: body=%s", (response.text or "")[:500])
            raise ProviderError("answer", "invalid json body", status_code=response.status_code) from exc

        text = data.get("answer") if isinstance(data, dict) else None
        metadata = data.get("metadata") if isinstance(data, dict) else None
        return AnswerResult(
            text=(text or "").strip() if isinstance(text, str) else "",
            metadata=metadata if isinstance(metadata, dict) else {},
        )
