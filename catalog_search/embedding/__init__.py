"""
Embedding Module
Local model registry and text encoding.
"""

from .model_loader import (
    CLIP_MODEL,
    NER_MODEL,
    ZERO_SHOT_MODEL,
    ModelRegistry,
    get_model_registry,
)
from .text_encoder import TextEncoderService

__all__ = [
    "CLIP_MODEL",
    "NER_MODEL",
    "ZERO_SHOT_MODEL",
    "ModelRegistry",
    "get_model_registry",
    "TextEncoderService",
]
