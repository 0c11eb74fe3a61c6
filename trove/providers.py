"""
trove/providers.py — AI provider capability (chat, vision, embeddings).

One provider is built at process start by build_provider(cfg) and passed
explicitly to the enrichment and search code; tests substitute a fake.

  NullProvider    — nothing configured; every call is a no-op
  OllamaProvider  — Ollama HTTP API (/api/chat, /api/embeddings)

OllamaProvider raises ProviderError / EmbedError on network, timeout or
response-shape failures. Callers in trove.enrich decide how to degrade.
"""

from __future__ import annotations

import base64
import json
import logging
import urllib.request
from typing import Any, Protocol

from config import Config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ProviderError(Exception):
    """Raised when a chat / vision call fails."""


class EmbedError(ProviderError):
    """Raised when an embedding call fails."""


# ---------------------------------------------------------------------------
# Capability interface
# ---------------------------------------------------------------------------

class EnrichmentProvider(Protocol):
    available: bool

    def chat(self, prompt: str, max_tokens: int = 256) -> str: ...

    def vision(self, prompt: str, image_bytes: bytes, mime_type: str) -> str: ...

    def embed(self, text: str) -> list[float]: ...


class NullProvider:
    """Stands in when no provider is configured. Never raises."""

    available = False

    def chat(self, prompt: str, max_tokens: int = 256) -> str:
        return ""

    def vision(self, prompt: str, image_bytes: bytes, mime_type: str) -> str:
        return ""

    def embed(self, text: str) -> list[float]:
        return []


class OllamaProvider:
    available = True

    def __init__(self, cfg: Config) -> None:
        if not cfg.ollama_base_url:
            raise ValueError("OllamaProvider needs ollama.base_url")
        self.base_url = cfg.ollama_base_url.rstrip("/")
        self.chat_model = cfg.chat_model
        self.vision_model = cfg.vision_model
        self.embed_model = cfg.embed_model
        self.timeout = cfg.ollama_timeout
        self.num_ctx = cfg.num_ctx

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        req = urllib.request.Request(
            self.base_url + path,
            data=json.dumps(payload).encode(),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with urllib.request.urlopen(req, timeout=self.timeout) as resp:
            return json.loads(resp.read())

    def _chat(self, model: str, message: dict[str, Any], max_tokens: int) -> str:
        try:
            data = self._post("/api/chat", {
                "model":    model,
                "messages": [message],
                "stream":   False,
                "options":  {"num_ctx": self.num_ctx, "num_predict": max_tokens},
            })
            return data["message"]["content"]
        except Exception as exc:
            raise ProviderError(f"{model}: {exc}") from exc

    def chat(self, prompt: str, max_tokens: int = 256) -> str:
        return self._chat(self.chat_model, {"role": "user", "content": prompt}, max_tokens)

    def vision(self, prompt: str, image_bytes: bytes, mime_type: str) -> str:
        # Ollama takes raw base64 images; mime type is implied by the bytes.
        encoded = base64.b64encode(image_bytes).decode("ascii")
        return self._chat(
            self.vision_model,
            {"role": "user", "content": prompt, "images": [encoded]},
            max_tokens=1024,
        )

    def embed(self, text: str) -> list[float]:
        try:
            data = self._post("/api/embeddings", {
                "model":  self.embed_model,
                "prompt": text,
            })
            return [float(v) for v in data["embedding"]]
        except Exception as exc:
            raise EmbedError(str(exc)) from exc


def build_provider(cfg: Config) -> EnrichmentProvider:
    """Return the configured provider, or NullProvider when AI is switched off."""
    if not cfg.enrichment_enabled or not cfg.ollama_base_url:
        logger.warning("AI provider not configured — enrichment and semantic search disabled")
        return NullProvider()
    return OllamaProvider(cfg)
