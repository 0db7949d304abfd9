from __future__ import annotations

import logging

import requests

from modules.core.errors import ProviderError
from modules.core.interfaces import AnswerProvider
from modules.core.schemas import AnswerResult

logger = logging.getLogger(__name__)


class OpenAICompatAnswerProvider(AnswerProvider):
    """Answers with a single chat completion, no retrieval step."""

    name = "openai_compat"

    def __init__(
        self,
        endpoint: str,
        model: str,
        api_key: str = "",
        timeout_s: float = 60.0,
        system_prompt: str = "You are a helpful assistant. Reply concisely.",
    ):
        self.endpoint = endpoint
        self.model = model
        self.api_key = (api_key or "").strip()
        self.timeout_s = timeout_s
        self.system_prompt = system_prompt

    @property
    def configured(self) -> bool:
        return bool(self.endpoint and self.model)

    def _build_payload(self, query: str) -> dict:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": query},
            ],
            "temperature": 0.2,
            "max_tokens": 400,
        }

    @staticmethod
    def _extract_text(data: dict) -> str:
        choices = data.get("choices")
        if isinstance(choices, list) and choices:
            first = choices[0] or {}
            message = first.get("message") or {}
            if isinstance(message.get("content"), str):
                return message["content"]
            if isinstance(first.get("text"), str):
                return first["text"]

        if isinstance(data.get("output"), str):
            return data["output"]
        if isinstance(data.get("text"), str):
            return data["text"]
        return ""

    def answer(self, query: str) -> AnswerResult:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        logger.info(
            "LLM request: endpoint=%s model=%s input=%s",
            self.endpoint,
            self.model,
            (query or "")[:120],
        )
        try:
            response = requests.post(
                self.endpoint,
                headers=headers,
                json=self._build_payload(query),
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            logger.exception("LLM HTTP request failed: endpoint=%s", self.endpoint)
            raise ProviderError("answer", str(exc)) from exc

        if not response.ok:
            logger.error(
                "LLM HTTP status error: status=%s body=%s",
                response.status_code,
                (response.text or "")[:500],
            )
            raise ProviderError("answer", "completion request rejected", status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            logger.exception("LLM JSON decode failed: body=%s", (response.text or "")[:500])
            raise ProviderError("answer", "invalid json body", status_code=response.status_code) from exc

        text = self._extract_text(data).strip()
        logger.info("LLM response parsed: text_len=%s", len(text))
        if not text:
            logger.warning("LLM response has no usable text: keys=%s", list(data.keys()))
        return AnswerResult(text=text, metadata={"model": self.model, "provider": self.name})
