from typing import Annotated, Literal

from annotated_types import Ge
from pydantic import PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FLOWGRAPH_")

    default_max_parallelism: PositiveInt = 3
    """Worker pool size for a wave when the Flow does not set `max_parallelism`."""

    default_fail_fast: bool = True
    """Failure policy for Flows that do not set `fail_fast`."""

    max_backoff_ms: Annotated[int, Ge(0)] = 30000
    """Upper bound in milliseconds for the delay between two step attempts."""

    event_buffer_size: PositiveInt = 256
    """Number of undelivered events a `MemoryEventSink` holds before dropping."""

    async_backend: Literal["asyncio", "trio"] = "asyncio"
    """Event loop used by `FlowRunner.run_sync`."""
