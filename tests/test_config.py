import pytest
from pydantic import ValidationError

from flowgraph import Config


def test_defaults():
    config = Config()

    assert config.default_max_parallelism == 3
    assert config.default_fail_fast is True
    assert config.max_backoff_ms == 30000
    assert config.async_backend == "asyncio"


def test_environment(monkeypatch):
    monkeypatch.setenv("FLOWGRAPH_DEFAULT_FAIL_FAST", "false")
    monkeypatch.setenv("FLOWGRAPH_DEFAULT_MAX_PARALLELISM", "8")
    monkeypatch.setenv("FLOWGRAPH_ASYNC_BACKEND", "trio")
    config = Config()

    assert config.default_fail_fast is False
    assert config.default_max_parallelism == 8
    assert config.async_backend == "trio"


@pytest.mark.parametrize(
    "settings",
    (
        {"default_max_parallelism": 0},
        {"max_backoff_ms": -1},
        {"async_backend": "curio"},
    ),
)
def test_invalid(settings):
    with pytest.raises(ValidationError):
        Config(**settings)
