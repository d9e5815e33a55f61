"""
Tests for search configuration and engine settings.
"""

import pytest

from catalog_search.config import (
    EmbeddingStrategy,
    SearchConfig,
    VectorSpace,
    get_search_config,
    reset_config,
)
from catalog_search.errors import ConfigurationError
from catalog_search.settings import EngineSettings, get_settings


class TestDefaults:
    def test_default_values(self, search_config):
        assert search_config.fusion.rrf_k == 60
        assert search_config.extraction.confidence_threshold == 0.7
        assert search_config.enrichment.max_entities_per_query == 5
        assert list(search_config.multi_vector.spaces) == list(VectorSpace)
        assert search_config.enrichment.enrichment_spaces == [
            VectorSpace.SEMANTIC,
            VectorSpace.CATEGORIES,
        ]

    def test_entity_term_spaces(self, search_config):
        strategies = {
            space.value: config.embedding_strategy
            for space, config in search_config.multi_vector.spaces.items()
        }

        assert strategies["semantic"] == EmbeddingStrategy.QUERY_TEXT
        assert strategies["aliases"] == EmbeddingStrategy.ENTITY_TERMS

    def test_unknown_space_gets_defaults(self, search_config):
        search_config.multi_vector.spaces.pop(VectorSpace.COMPOSITES)

        space_config = search_config.multi_vector.get_space(VectorSpace.COMPOSITES)

        assert space_config.weight == 1.0
        assert space_config.timeout_s == 3.0

    def test_defaults_validate(self, search_config):
        search_config.validate()


class TestValidation:
    @pytest.mark.parametrize(
        "mutate,message",
        [
            (lambda c: setattr(c.fusion, "rrf_k", 0), "rrf_k"),
            (lambda c: setattr(c.extraction, "confidence_threshold", 1.5), "confidence_threshold"),
            (lambda c: setattr(c.enrichment, "confidence_divisor", 0), "confidence_divisor"),
            (
                lambda c: setattr(c.multi_vector.spaces[VectorSpace.ALIASES], "weight", -0.1),
                "aliases",
            ),
            (
                lambda c: setattr(c.multi_vector.spaces[VectorSpace.SEMANTIC], "timeout_s", 0),
                "semantic",
            ),
            (lambda c: setattr(c.cache, "min_ttl", 9000), "min_ttl"),
        ],
    )
    def test_invalid_values_raise(self, search_config, mutate, message):
        mutate(search_config)

        with pytest.raises(ConfigurationError, match=message):
            search_config.validate()


class TestEnvironment:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SEARCH_RRF_K", "30")
        monkeypatch.setenv("SEARCH_SPACE_TIMEOUT_S", "1.5")
        monkeypatch.setenv("SEARCH_DEADLINE_S", "4")

        config = SearchConfig.from_env()

        assert config.fusion.rrf_k == 30
        assert all(s.timeout_s == 1.5 for s in config.multi_vector.spaces.values())
        assert config.pipeline.default_deadline_s == 4.0

    def test_global_config_is_cached_until_reset(self, monkeypatch):
        first = get_search_config()
        assert get_search_config() is first

        monkeypatch.setenv("SEARCH_RRF_K", "10")
        reset_config()

        assert get_search_config().fusion.rrf_k == 10

    def test_global_config_is_validated(self, monkeypatch):
        monkeypatch.setenv("SEARCH_RRF_K", "-1")

        with pytest.raises(ConfigurationError):
            get_search_config()

    def test_engine_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("REDIS_HOST", "cache.internal")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = EngineSettings()

        assert settings.redis_host == "cache.internal"
        assert settings.log_level == "DEBUG"

    def test_settings_singleton(self):
        assert get_settings() is get_settings()
