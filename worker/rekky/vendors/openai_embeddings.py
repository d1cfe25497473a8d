"""Client utilities for the OpenAI embeddings API."""

import logging
from typing import Any, Dict, List, Mapping, Optional

import requests

from rekky.core.config import Settings, get_settings
from rekky.etl.embedding_text import build_annotation_text, build_recommendation_text

logger = logging.getLogger(__name__)
_SESSION = requests.Session()


class EmbeddingError(RuntimeError):
    """Raised when the embeddings API cannot produce a vector."""


def create_embedding(
    text: str,
    *,
    api_key: str,
    model: str,
    base_url: str = "https://api.openai.com/v1",
    timeout: float = 30.0,
) -> List[float]:
    if not api_key:
        raise EmbeddingError("OPENAI_API_KEY environment variable is not set")

    try:
        response = _SESSION.post(
            f"{base_url}/embeddings",
            json={"model": model, "input": text},
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
        )
        response.raise_for_status()
        payload: Dict[str, Any] = response.json()
    except (requests.RequestException, ValueError) as exc:
        logger.error("Embedding request failed: %s", exc)
        raise EmbeddingError(f"Failed to generate embedding: {exc}") from exc

    data = payload.get("data") or []
    if not data or not data[0].get("embedding"):
        logger.error("Embedding response missing data: keys=%s", list(payload.keys())[:10])
        raise EmbeddingError("Embedding response did not contain a vector")
    return [float(value) for value in data[0]["embedding"]]


class EmbeddingGenerator:
    """Builds the text for a record kind and asks the API for its vector."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def generate_embedding(self, text: str) -> List[float]:
        return create_embedding(
            text,
            api_key=self.settings.openai_api_key,
            model=self.settings.embedding_model,
            base_url=self.settings.embedding_api_url,
            timeout=self.settings.embedding_timeout,
        )

    def generate_annotation_embedding(self, data: Mapping[str, Any]) -> List[float]:
        return self.generate_embedding(build_annotation_text(data))

    def generate_recommendation_embedding(self, data: Mapping[str, Any]) -> List[float]:
        return self.generate_embedding(build_recommendation_text(data))
