"""
Embedding backend for the "embedding" similarity algorithm.
OpenAI text-embedding-3-small (1536-dim); model overridable with EMBEDDING_MODEL.
"""

import logging
from typing import Dict, List, Optional

from openai import OpenAI, OpenAIError

from config import EMBEDDING_MODEL, OPENAI_API_KEY
from services.errors import ExternalServiceError

log = logging.getLogger(__name__)


class EmbeddingGenerator:
    """
    Turns question text into vectors.
    Vectors are cached per text for the lifetime of the generator, so pairwise
    bank analysis embeds each question once.
    """

    EMBEDDING_DIM = 1536

    def __init__(self, model_name: str = EMBEDDING_MODEL, api_key: Optional[str] = None):
        self.model_name = model_name
        self.api_key = api_key or OPENAI_API_KEY
        if not self.api_key:
            raise ExternalServiceError(
                "OPENAI_API_KEY not set; the embedding similarity algorithm is unavailable"
            )
        self.client = OpenAI(api_key=self.api_key)
        self._cache: Dict[str, List[float]] = {}
        log.info("Embedding model ready: %s", model_name)

    def generate_embedding(self, text: str) -> List[float]:
        if not text or not text.strip():
            return [0.0] * self.EMBEDDING_DIM
        if text in self._cache:
            return self._cache[text]
        try:
            response = self.client.embeddings.create(input=text, model=self.model_name)
        except OpenAIError as e:
            raise ExternalServiceError(f"Embedding request failed: {e}")
        vector = response.data[0].embedding
        self._cache[text] = vector
        return vector

    def generate_embeddings_batch(self, texts: List[str], batch_size: int = 100) -> List[List[float]]:
        """Embed many texts, batching the uncached ones."""
        missing = [t for t in dict.fromkeys(texts) if t and t.strip() and t not in self._cache]
        for i in range(0, len(missing), batch_size):
            batch = missing[i:i + batch_size]
            try:
                response = self.client.embeddings.create(input=batch, model=self.model_name)
            except OpenAIError as e:
                raise ExternalServiceError(f"Batch embedding request failed: {e}")
            for text, item in zip(batch, response.data):
                self._cache[text] = item.embedding
        return [self.generate_embedding(t) for t in texts]


# Singleton instance for reuse
_embedding_generator: Optional[EmbeddingGenerator] = None


def get_embedding_generator() -> EmbeddingGenerator:
    """Lazy initialization - client created on first call."""
    global _embedding_generator
    if _embedding_generator is None:
        _embedding_generator = EmbeddingGenerator()
    return _embedding_generator
