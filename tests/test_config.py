"""Tests for ChainQLConfig and its builder."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from chainql import ChainQLConfig, ConfigurationError


def test_defaults_disable_optional_layers():
    config = ChainQLConfig()
    assert config.dialect == "mysql"
    assert config.debug is False
    assert config.cache_enabled is False
    assert config.max_concurrency is None
    assert config.query_log_enabled is False
    assert config.default_per_page == 15
    assert config.default_chunk_size == 1000


def test_builder_enables_each_layer():
    config = (
        ChainQLConfig.builder(dialect="postgres")
        .debug()
        .cache(ttl=120, sweep_interval=30)
        .max_concurrency(8)
        .pagination(per_page=20, chunk_size=500)
        .query_log(size=50, slow_threshold=0.25)
        .build()
    )
    assert config.dialect == "postgres"
    assert config.debug is True
    assert (config.cache_enabled, config.cache_ttl, config.cache_sweep_interval) == (True, 120, 30)
    assert config.max_concurrency == 8
    assert (config.default_per_page, config.default_chunk_size) == (20, 500)
    assert (config.query_log_enabled, config.query_log_size) == (True, 50)
    assert config.slow_query_threshold == 0.25


def test_builder_reports_invalid_field():
    with pytest.raises(ConfigurationError) as exc_info:
        ChainQLConfig.builder().max_concurrency(0).build()
    assert exc_info.value.field == "max_concurrency"
    assert "max_concurrency" in str(exc_info.value)


def test_builder_rejects_unknown_dialect():
    with pytest.raises(ConfigurationError) as exc_info:
        ChainQLConfig.builder(dialect="oracle").build()  # type: ignore[arg-type]
    assert exc_info.value.field == "dialect"


def test_direct_construction_rejects_unknown_fields():
    with pytest.raises(ValidationError):
        ChainQLConfig(pool_size=5)  # type: ignore[call-arg]
    with pytest.raises(ValidationError):
        ChainQLConfig(cache_ttl=0)
