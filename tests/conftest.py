"""Shared test fixtures."""

import pytest

from flex_agent.config import API, AgentSettings, Config
from flex_agent.context import CollectorContext


@pytest.fixture
def settings() -> AgentSettings:
    """Settings with a small interval and no export endpoints."""
    return AgentSettings(interval=60, max_concurrency=4, integration_version="test")


@pytest.fixture
def context(settings: AgentSettings) -> CollectorContext:
    """A fresh collector context per test."""
    return CollectorContext(settings)


@pytest.fixture
def make_api():
    """Build an API definition from keyword YAML fields."""

    def _make(**fields) -> API:
        fields.setdefault("name", "test")
        return API.from_dict(fields)

    return _make


@pytest.fixture
def make_config():
    """Build a Config from a list of API mappings plus top-level fields."""

    def _make(apis: list[dict], **fields) -> Config:
        data = dict(fields)
        data["apis"] = apis
        return Config.from_dict(data, "test.yml")

    return _make
