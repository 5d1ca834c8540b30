import logging
from typing import Callable, Iterator, List, Optional

from openai import OpenAI

from services.config import Config

_logger = logging.getLogger("groq")


class GroqError(RuntimeError):
    pass


def _default_factory(api_key):
    # Rotation across the key pool replaces the SDK's own retries.
    return OpenAI(api_key=api_key, base_url=Config.groq_base_url, max_retries=0)


class GroqClient:
    """
    Chat-completion client over a small pool of Groq API keys.

    A failing key moves the pool to the next one; the call only fails once
    every key has been tried.
    """

    def __init__(
        self,
        api_keys: Optional[List[str]] = None,
        model: Optional[str] = None,
        client_factory: Callable = _default_factory,
    ):
        keys = Config.groq_api_keys if api_keys is None else api_keys
        self.api_keys = [k for k in keys if k]
        self.model = model or Config.groq_model
        self._client_factory = client_factory
        self._clients = {}
        self._current_key_index = 0

    @property
    def current_key_index(self):
        return self._current_key_index

    def _client_for(self, index):
        if index not in self._clients:
            self._clients[index] = self._client_factory(self.api_keys[index])
        return self._clients[index]

    def _rotate(self):
        self._current_key_index = (self._current_key_index + 1) % len(self.api_keys)

    def chat(self, messages, temperature=0.7, max_tokens=2000, model=None) -> str:
        if not self.api_keys:
            raise GroqError("No Groq API keys configured")

        last_error = None
        for _ in range(len(self.api_keys)):
            index = self._current_key_index
            try:
                response = self._client_for(index).chat.completions.create(
                    model=model or self.model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
                return response.choices[0].message.content or ""
            except Exception as exc:
                last_error = exc
                _logger.warning("Groq key %d failed: %s", index, exc)
                self._rotate()

        raise GroqError(f"All Groq API keys exhausted: {last_error}") from last_error

    def stream(self, messages, temperature=0.7, max_tokens=2000) -> Iterator[str]:
        """
        Yields content deltas. Keys are rotated only for failures that happen
        before the first chunk; a stream that breaks midway is re-raised.
        """
        if not self.api_keys:
            raise GroqError("No Groq API keys configured")

        last_error = None
        for _ in range(len(self.api_keys)):
            index = self._current_key_index
            try:
                chunks = self._client_for(index).chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    stream=True,
                )
            except Exception as exc:
                last_error = exc
                _logger.warning("Groq key %d failed to open stream: %s", index, exc)
                self._rotate()
                continue

            for chunk in chunks:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
            return

        raise GroqError(f"All Groq API keys exhausted: {last_error}") from last_error


_groq_client = None


def get_groq_client() -> GroqClient:
    global _groq_client
    if _groq_client is None:
        _groq_client = GroqClient()
    return _groq_client
