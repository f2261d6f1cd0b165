import logging
import warnings
from pathlib import Path

from pydantic import ValidationError

from .exceptions import FlowLoadError
from .flow import Flow

logger = logging.getLogger(__name__)

FLOW_SUFFIX = ".flow.json"


class FlowLoader:
    """
    Loads Flow definitions from a directory, one `<flow_id>.flow.json` file per
    Flow. Loaded Flows are validated models but are not resolved.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, flow_id: str) -> Path:
        return self.directory / f"{flow_id}{FLOW_SUFFIX}"

    def list_flow_ids(self) -> list[str]:
        if not self.directory.is_dir():
            return []

        return sorted(
            path.name.removesuffix(FLOW_SUFFIX)
            for path in self.directory.iterdir()
            if path.is_file() and path.name.endswith(FLOW_SUFFIX)
        )

    def flow_exists(self, flow_id: str) -> bool:
        return self._path(flow_id).is_file()

    def load_flow(self, flow_id: str) -> Flow:
        path = self._path(flow_id)

        try:
            flow = Flow.model_validate_json(path.read_bytes())
        except (OSError, ValidationError) as e:
            raise FlowLoadError(flow_id, e) from e

        if flow.id != flow_id:
            raise FlowLoadError(
                flow_id, f"flow id '{flow.id}' does not match file name '{path.name}'"
            )

        logger.debug("loaded flow '%s' from %s", flow_id, path)
        return flow

    def load_all_flows(self) -> list[Flow]:
        flows: list[Flow] = []
        for flow_id in self.list_flow_ids():
            try:
                flows.append(self.load_flow(flow_id))
            except FlowLoadError as e:
                warnings.warn(f"Skipping invalid flow file. {e}", stacklevel=2)

        return flows
