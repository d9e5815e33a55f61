"""
Text Encoder Service
Converts query and entity text to embeddings using the CLIP text encoder.
"""

import logging
from typing import List, Optional

import numpy as np

from ..models import normalize_text
from .model_loader import ModelRegistry, get_model_registry

logger = logging.getLogger(__name__)


class TextEncoderService:
    """
    Service for encoding text to embedding vectors.

    Blocking; callers on the event loop run it in a worker thread.
    """

    def __init__(self, model_registry: Optional[ModelRegistry] = None, embedding_dim: int = 512):
        """
        Initialize text encoder service.

        Args:
            model_registry: Model registry (uses global if not provided)
            embedding_dim: Output dimension of the text tower
        """
        self.model_registry = model_registry or get_model_registry()
        self.embedding_dim = embedding_dim

        logger.info("Text encoder service initialized")

    def encode(self, text: str) -> np.ndarray:
        """
        Encode text to an embedding vector.

        Args:
            text: Query or entity text

        Returns:
            Embedding vector (normalized)

        Raises:
            ValueError: If text is empty after normalization
        """
        cleaned = normalize_text(text or "")
        if not cleaned:
            raise ValueError("Text cannot be empty")

        embedding = self.model_registry.encode_text(cleaned)
        logger.debug(f"Encoded '{cleaned[:50]}' -> embedding shape: {embedding.shape}")
        return embedding

    def encode_batch(self, texts: List[str]) -> np.ndarray:
        """
        Encode multiple texts.

        Returns:
            Array of embeddings (shape: [num_texts, embedding_dim])
        """
        if not texts:
            raise ValueError("Texts list cannot be empty")
        return np.vstack([self.encode(text) for text in texts])
