"""External services the classification core consumes."""

from .embedding import (
    BatchEmbeddingResult,
    EmbeddingProvider,
    EmbeddingResult,
    embed_in_batches,
    get_embedding_provider,
)
from .tagging import AnthropicTagProvider, TagGenerationProvider

__all__ = [
    "BatchEmbeddingResult",
    "EmbeddingProvider",
    "EmbeddingResult",
    "embed_in_batches",
    "get_embedding_provider",
    "AnthropicTagProvider",
    "TagGenerationProvider",
]
