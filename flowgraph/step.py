from collections.abc import Mapping
from enum import Enum
from typing import Annotated, Any, Literal

from annotated_types import Ge
from pydantic import BaseModel, ConfigDict, Field, PositiveInt, model_validator
from pydantic.alias_generators import to_camel

# definitions are written in camelCase by flow authors, snake_case from Python
DEFINITION_CONFIG = ConfigDict(
    extra="forbid", frozen=True, alias_generator=to_camel, populate_by_name=True
)


class Transform(Enum):
    PASSTHROUGH = "passthrough"
    MERGE_AS_CONTEXT = "mergeAsContext"
    EXTRACT_SECTION = "extractSection"
    APPEND_TO_REQUEST = "appendToRequest"
    JSON_EXTRACT = "jsonExtract"
    TEMPLATE_FILL = "templateFill"


class RequestSource(BaseModel):
    """The step reads the original request."""

    model_config = DEFINITION_CONFIG

    source: Literal["request"] = "request"

    @property
    def step_ids(self) -> tuple[str, ...]:
        return ()


class StepSource(BaseModel):
    """The step reads the output of a single upstream step."""

    model_config = DEFINITION_CONFIG

    source: Literal["step"] = "step"
    step_id: str = Field(min_length=1)

    @property
    def step_ids(self) -> tuple[str, ...]:
        return (self.step_id,)


class AggregateSource(BaseModel):
    """The step reads the outputs of several upstream steps, in declared order."""

    model_config = DEFINITION_CONFIG

    source: Literal["aggregate"] = "aggregate"
    from_: tuple[str, ...] = Field(alias="from", min_length=1)

    @property
    def step_ids(self) -> tuple[str, ...]:
        return self.from_


InputSource = Annotated[
    RequestSource | StepSource | AggregateSource, Field(discriminator="source")
]

_SOURCE_KEYS = ("stepId", "step_id", "from", "from_")


class InputSpec(BaseModel):
    model_config = DEFINITION_CONFIG

    source: InputSource = Field(default_factory=RequestSource)
    transform: Transform = Transform.PASSTHROUGH
    args: Any = Field(default=None, alias="transformArgs")

    @model_validator(mode="before")
    @classmethod
    def _nest_flat_source(cls, data: Any) -> Any:
        # the declarative format keeps source fields next to the transform:
        # {"source": "step", "stepId": "a", "transform": "passthrough"}
        if isinstance(data, Mapping) and isinstance(data.get("source"), str):
            data = dict(data)
            source = {"source": data.pop("source")}
            for key in _SOURCE_KEYS:
                if key in data:
                    source[key] = data.pop(key)

            data["source"] = source

        return data

    @model_validator(mode="after")
    def _check_transform_args(self) -> "InputSpec":
        if self.transform in (Transform.EXTRACT_SECTION, Transform.JSON_EXTRACT):
            if not isinstance(self.args, str) or not self.args:
                raise ValueError(
                    f"Transform '{self.transform.value}' requires a non-empty string"
                    " argument."
                )
        elif self.transform is Transform.TEMPLATE_FILL:
            if self.args is not None and not isinstance(self.args, Mapping):
                raise ValueError(
                    "Transform 'templateFill' requires a mapping of template variables."
                )
        elif self.args is not None:
            raise ValueError(
                f"Transform '{self.transform.value}' does not accept arguments."
            )

        return self


class RetryPolicy(BaseModel):
    model_config = DEFINITION_CONFIG

    max_attempts: PositiveInt = 1
    backoff_ms: Annotated[int, Ge(0)] = 1000

    def delay_ms(self, attempt: int, cap_ms: int | None = None) -> int:
        """Delay to wait after the given (1-indexed) failed attempt."""
        delay = self.backoff_ms * 2 ** (attempt - 1)
        return delay if cap_ms is None else min(delay, cap_ms)


class Step(BaseModel):
    model_config = DEFINITION_CONFIG

    id: str = Field(min_length=1)
    name: str = ""
    agent: str = Field(min_length=1)
    skills: tuple[str, ...] = ()
    depends_on: frozenset[str] = Field(default_factory=frozenset)
    input: InputSpec = Field(default_factory=InputSpec)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    timeout_ms: PositiveInt | None = Field(default=None, alias="timeout")

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def source_step_ids(self) -> tuple[str, ...]:
        return self.input.source.step_ids
