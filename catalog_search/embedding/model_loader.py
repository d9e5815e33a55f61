"""
Model Loader
Registry for loading and caching local ML models (CLIP text tower, NER, zero-shot intent).
Handles lazy loading, load retries and a per-model circuit breaker.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np

from ..config import ExtractionConfig, get_search_config
from ..errors import ExtractionUnavailable
from ..settings import EngineSettings, get_settings

logger = logging.getLogger(__name__)

NER_MODEL = "ner"
ZERO_SHOT_MODEL = "zero_shot"
CLIP_MODEL = "clip"


def load_ner_pipeline(config: ExtractionConfig, settings: EngineSettings) -> Any:
    """Load a Hugging Face token-classification pipeline with entity grouping."""
    from transformers import pipeline

    return pipeline(
        "ner",
        model=config.ner_model,
        aggregation_strategy="simple",
        model_kwargs={"cache_dir": settings.model_cache_dir},
    )


def load_zero_shot_pipeline(config: ExtractionConfig, settings: EngineSettings) -> Any:
    """Load a Hugging Face zero-shot classification pipeline."""
    from transformers import pipeline

    return pipeline(
        "zero-shot-classification",
        model=config.classification_model,
        model_kwargs={"cache_dir": settings.model_cache_dir},
    )


def load_clip_text_model(config: ExtractionConfig, settings: EngineSettings) -> Tuple[Any, Any]:
    """Load an open_clip model and its tokenizer for text encoding."""
    import open_clip

    model, _, _ = open_clip.create_model_and_transforms(
        settings.clip_model,
        pretrained=settings.clip_pretrained,
        cache_dir=settings.model_cache_dir,
    )
    model = model.to(settings.device)
    model.eval()
    tokenizer = open_clip.get_tokenizer(settings.clip_model)
    return model, tokenizer


Loader = Callable[[ExtractionConfig, EngineSettings], Any]


class ModelRegistry:
    """
    Registry for local models.

    Provides:
    - Lazy loading (models loaded once per registry)
    - Load retry with exponential backoff
    - Circuit breaker: a model that exhausts its retries stays unavailable
      for the lifetime of the registry
    - Text encoding API for the CLIP text tower

    Usage:
        registry = ModelRegistry()
        ner = registry.get_model(NER_MODEL)
        embedding = registry.encode_text("free ui builder")
    """

    def __init__(
        self,
        config: Optional[ExtractionConfig] = None,
        settings: Optional[EngineSettings] = None,
        loaders: Optional[Dict[str, Loader]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize registry.

        Args:
            config: Extraction configuration (retry and model names)
            settings: Engine settings (device, cache dir, CLIP model)
            loaders: Override loaders by model name (e.g. fakes in tests)
            sleep: Sleep function used between load attempts
        """
        self.config = config or get_search_config().extraction
        self.settings = settings or get_settings()
        self._sleep = sleep

        self._loaders: Dict[str, Loader] = {
            NER_MODEL: load_ner_pipeline,
            ZERO_SHOT_MODEL: load_zero_shot_pipeline,
            CLIP_MODEL: load_clip_text_model,
        }
        if loaders:
            self._loaders.update(loaders)

        self._models: Dict[str, Any] = {}
        self._open_breakers: Dict[str, str] = {}  # model name -> failure reason
        self._lock = threading.Lock()

        logger.info(f"ModelRegistry initialized (device: {self.settings.device})")

    def get_model(self, name: str) -> Any:
        """
        Get a loaded model, loading it on first use.

        Args:
            name: Model name (NER_MODEL, ZERO_SHOT_MODEL, CLIP_MODEL)

        Returns:
            Loaded model object

        Raises:
            ExtractionUnavailable: If loading failed or the breaker is open
        """
        if name in self._models:
            return self._models[name]

        with self._lock:
            if name in self._models:
                return self._models[name]

            if name in self._open_breakers:
                raise ExtractionUnavailable(
                    f"Model '{name}' unavailable (circuit open)",
                    details={"model": name, "reason": self._open_breakers[name]},
                )

            loader = self._loaders.get(name)
            if loader is None:
                raise ValueError(f"Unsupported model: {name}")

            self._models[name] = self._load_with_retry(name, loader)
            return self._models[name]

    def _load_with_retry(self, name: str, loader: Loader) -> Any:
        attempts = self.config.load_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            start_time = time.time()
            try:
                model = loader(self.config, self.settings)
                logger.info(f"Model '{name}' loaded in {time.time() - start_time:.2f}s")
                return model
            except Exception as e:
                last_error = e
                if attempt + 1 < attempts:
                    wait = self.config.load_backoff_s * (2**attempt)
                    logger.warning(
                        f"Loading model '{name}' failed (attempt {attempt + 1}/{attempts}): {e}. "
                        f"Retrying in {wait:.2f}s"
                    )
                    self._sleep(wait)

        self._open_breakers[name] = str(last_error)
        logger.error(
            f"Model '{name}' failed to load after {attempts} attempts, "
            f"routing to fallback for the process lifetime: {last_error}"
        )
        raise ExtractionUnavailable(
            f"Model '{name}' failed to load", details={"model": name, "reason": str(last_error)}
        )

    def is_available(self, name: str) -> bool:
        """True unless the model's circuit breaker is open."""
        return name not in self._open_breakers

    def model_status(self) -> Dict[str, str]:
        """Load status per known model: loaded, failed or not_loaded."""
        status = {}
        for name in self._loaders:
            if name in self._models:
                status[name] = "loaded"
            elif name in self._open_breakers:
                status[name] = "failed"
            else:
                status[name] = "not_loaded"
        return status

    def encode_text(self, text: str) -> np.ndarray:
        """
        Encode text using the CLIP text encoder.

        Args:
            text: Text string to encode

        Returns:
            L2-normalized embedding vector (shape: [embedding_dim])
        """
        import torch

        model, tokenizer = self.get_model(CLIP_MODEL)
        tokens = tokenizer([text]).to(self.settings.device)

        with torch.no_grad():
            embedding = model.encode_text(tokens)
            embedding = embedding / embedding.norm(dim=-1, keepdim=True)

        return embedding.cpu().float().numpy()[0]


# Global instance accessor
_model_registry: Optional[ModelRegistry] = None


def get_model_registry() -> ModelRegistry:
    """Get global model registry instance."""
    global _model_registry
    if _model_registry is None:
        _model_registry = ModelRegistry()
    return _model_registry
