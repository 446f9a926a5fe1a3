"""
Tests for settings and runtime wiring.
"""

import pytest
from pydantic import ValidationError

from flagengine.core.config import FeatureSettings, Settings
from flagengine.core.features import (
    DatabaseFlagStore,
    GeminiRiskAnalyzer,
    MemoryFlagStore,
    StubRiskAnalyzer,
    build_runtime,
)


def test_feature_settings_from_env(monkeypatch):
    monkeypatch.setenv("FEATURE_BACKEND", "memory")
    monkeypatch.setenv("FEATURE_EVALUATION_TIMEOUT", "0.25")
    monkeypatch.setenv("FEATURE_AUDIT_PAGE_SIZE", "20")

    features = FeatureSettings()

    assert features.backend == "memory"
    assert features.evaluation_timeout == 0.25
    assert features.audit_page_size == 20


def test_unknown_backend_rejected():
    with pytest.raises(ValidationError):
        FeatureSettings(backend="redis")


def test_unknown_environment_rejected():
    with pytest.raises(ValidationError):
        Settings(environment="qa")


def test_build_memory_runtime():
    config = Settings(features=FeatureSettings(backend="memory", evaluation_timeout=0.1, audit_page_size=7))

    runtime = build_runtime(config)

    assert isinstance(runtime.registry.store, MemoryFlagStore)
    assert runtime.engine.registry is runtime.registry
    assert runtime.pipeline.audit_log is runtime.audit_log
    assert runtime.engine.default_timeout == 0.1
    assert runtime.audit_log.page_size == 7
    assert isinstance(runtime.analyzer, StubRiskAnalyzer)


@pytest.mark.asyncio
async def test_build_database_runtime(session_factory):
    config = Settings(features=FeatureSettings(backend="database", advisor_api_key="secret"))

    runtime = build_runtime(config, session_factory=session_factory)

    assert isinstance(runtime.registry.store, DatabaseFlagStore)
    assert isinstance(runtime.analyzer, GeminiRiskAnalyzer)
