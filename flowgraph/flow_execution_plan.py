from pydantic import BaseModel, ConfigDict


class FlowExecutionPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    order: tuple[str, ...]
    waves: tuple[frozenset[str], ...]

    def wave_of(self, step_id: str) -> int:
        for index, wave in enumerate(self.waves):
            if step_id in wave:
                return index

        raise KeyError(step_id)

    def after(self, index: int) -> set[str]:
        """Step ids in the waves following the wave at `index`."""
        return {step_id for wave in self.waves[index + 1 :] for step_id in wave}

    def ordered(self, wave: frozenset[str]) -> list[str]:
        """Members of a wave in topological (and then declaration) order."""
        return [step_id for step_id in self.order if step_id in wave]
