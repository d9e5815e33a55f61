"""
Pytest configuration and shared fixtures
"""

import asyncio
import hashlib
import threading
import time
from typing import Dict, Iterable, List, Optional

import fakeredis
import numpy as np
import pytest

from catalog_search.caching import RedisCache, SearchCache
from catalog_search.config import SearchConfig, reset_config
from catalog_search.embedding import NER_MODEL, ZERO_SHOT_MODEL, ModelRegistry
from catalog_search.models import CatalogItem
from catalog_search.retrieval import BackendHit
from catalog_search.settings import EngineSettings, reset_settings

ALL_SPACES = ["semantic", "categories", "functionality", "aliases", "composites"]


class HashEmbedder:
    """Deterministic text embedder: same text, same unit vector."""

    def __init__(self, dimension: int = 16):
        self.dimension = dimension
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def encode(self, text: str) -> np.ndarray:
        with self._lock:
            self.calls.append(text)
        seed = int(hashlib.sha256(text.encode("utf-8")).hexdigest()[:8], 16)
        vector = np.random.default_rng(seed).standard_normal(self.dimension)
        return (vector / np.linalg.norm(vector)).astype(np.float32)


class FakeVectorBackend:
    """
    In-memory vector backend returning canned hits per space.

    fail_spaces always raise, fail_calls raise for the first N calls of a
    space, slow_spaces sleep before answering.
    """

    def __init__(
        self,
        hits_by_space: Optional[Dict[str, List[BackendHit]]] = None,
        fail_spaces: Iterable[str] = (),
        slow_spaces: Optional[Dict[str, float]] = None,
        fail_calls: Optional[Dict[str, int]] = None,
    ):
        self.hits_by_space = hits_by_space or {}
        self.fail_spaces = set(fail_spaces)
        self.slow_spaces = dict(slow_spaces or {})
        self.fail_calls = dict(fail_calls or {})
        self.calls: List[str] = []

    async def search(self, space, embedding, limit, min_score=None):
        self.calls.append(space)
        if space in self.slow_spaces:
            await asyncio.sleep(self.slow_spaces[space])
        if space in self.fail_spaces:
            raise ConnectionError(f"backend unreachable for {space}")
        if self.fail_calls.get(space, 0) > 0:
            self.fail_calls[space] -= 1
            raise ConnectionError(f"transient failure for {space}")

        hits = self.hits_by_space.get(space, [])
        if min_score is not None:
            hits = [hit for hit in hits if hit.score >= min_score]
        return hits[:limit]


class FakeCatalogStore:
    """Catalog store over a dict of items."""

    def __init__(self, items: Iterable[CatalogItem] = (), fail: bool = False):
        self.items = {item.item_id: item for item in items}
        self.fail = fail

    async def get_items_by_ids(self, ids):
        if self.fail:
            raise ConnectionError("catalog store unavailable")
        return [self.items[item_id] for item_id in ids if item_id in self.items]

    async def get_item_by_text(self, name):
        if self.fail:
            raise ConnectionError("catalog store unavailable")
        for item in self.items.values():
            if item.name.lower() == name.strip().lower():
                return item
        return None


class FakeNER:
    """Stands in for a transformers token-classification pipeline."""

    def __init__(self, entities: Optional[List[dict]] = None, error: Optional[Exception] = None):
        self.entities = entities or []
        self.error = error
        self.calls = 0

    def __call__(self, text):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [dict(entity) for entity in self.entities]


class FakeZeroShot:
    """Stands in for a transformers zero-shot pipeline; the given label wins."""

    def __init__(self, label: str, score: float):
        self.label = label
        self.score = score

    def __call__(self, text, candidate_labels, hypothesis_template):
        others = [label for label in candidate_labels if label != self.label]
        remainder = (1.0 - self.score) / max(len(others), 1)
        return {
            "sequence": text,
            "labels": [self.label] + others,
            "scores": [self.score] + [remainder] * len(others),
        }


class SlowRedis(fakeredis.FakeRedis):
    """FakeRedis whose reads and writes block the calling thread for `delay` seconds."""

    delay = 0.5

    def get(self, name):
        time.sleep(self.delay)
        return super().get(name)

    def set(self, name, value, *args, **kwargs):
        time.sleep(self.delay)
        return super().set(name, value, *args, **kwargs)

    def setex(self, name, time_s, value):
        time.sleep(self.delay)
        return super().setex(name, time_s, value)

    def incrby(self, name, amount=1):
        time.sleep(self.delay)
        return super().incrby(name, amount)


def make_hits(prefix: str, count: int, start_score: float = 0.95, step: float = 0.01, **payload):
    """Hits prefix-1 .. prefix-count with descending scores."""
    return [
        BackendHit(
            item_id=f"{prefix}-{i}",
            score=round(start_score - (i - 1) * step, 4),
            payload=dict(payload),
        )
        for i in range(1, count + 1)
    ]


def make_registry(search_config, ner=None, zero_shot=None, fail_loading=False):
    """ModelRegistry with fake loaders and no real sleeping."""
    if fail_loading:

        def loader(config, settings):
            raise RuntimeError("model weights unavailable")

        loaders = {NER_MODEL: loader, ZERO_SHOT_MODEL: loader}
    else:
        loaders = {
            NER_MODEL: lambda config, settings: ner or FakeNER(),
            ZERO_SHOT_MODEL: lambda config, settings: zero_shot,
        }
    return ModelRegistry(
        config=search_config.extraction,
        settings=EngineSettings(),
        loaders=loaders,
        sleep=lambda seconds: None,
    )


@pytest.fixture(autouse=True)
def reset_globals():
    """Keep process-wide config and settings out of test state."""
    reset_config()
    reset_settings()
    yield
    reset_config()
    reset_settings()


@pytest.fixture
def search_config():
    """Fresh default configuration."""
    return SearchConfig()


@pytest.fixture
def space_weights(search_config):
    return {
        space.value: space_config.weight
        for space, space_config in search_config.multi_vector.spaces.items()
    }


@pytest.fixture
def fake_redis():
    return fakeredis.FakeRedis()


@pytest.fixture
def redis_cache(fake_redis):
    return RedisCache(settings=EngineSettings(), client=fake_redis)


@pytest.fixture
def search_cache(search_config, redis_cache):
    return SearchCache(config=search_config.cache, redis_cache=redis_cache)


@pytest.fixture
def embedder():
    return HashEmbedder()


@pytest.fixture
def catalog_items():
    """Small catalog of developer tools."""
    return [
        CatalogItem(
            "i1",
            "Bolt",
            {"categories": ["UI Builder", "No-Code"], "pricing": "Free", "interface": ["Web"]},
        ),
        CatalogItem(
            "i2",
            "Lovable",
            {"categories": ["UI Builder"], "pricing": "Freemium", "interface": ["Web"]},
        ),
        CatalogItem(
            "i3",
            "Render",
            {"categories": ["Hosting"], "pricing": "Free", "interface": ["Web", "CLI"]},
        ),
        CatalogItem(
            "i4",
            "Zed",
            {"categories": ["UI Builder"], "pricing": "Paid", "interface": ["Desktop"]},
        ),
    ]


@pytest.fixture
def catalog_store(catalog_items):
    return FakeCatalogStore(catalog_items)
