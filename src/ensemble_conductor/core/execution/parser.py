"""Ensemble document parsing and agent reference helpers."""

import logging
from collections.abc import Callable, Mapping
from typing import Any

import yaml

from ensemble_conductor.core.config.ensemble_config import (
    EnsembleConfig,
    parse_ensemble_data,
)
from ensemble_conductor.core.errors import EnsembleParseError
from ensemble_conductor.core.execution.interpolation import (
    Interpolator,
    get_interpolator,
)

logger = logging.getLogger(__name__)


def parse_agent_reference(reference: str) -> tuple[str, str | None]:
    """Split ``name@version`` into ``(name, version)``."""
    name, sep, version = reference.partition("@")
    return name, (version or None) if sep else None


class Parser:
    """Turns YAML text into a validated ``EnsembleConfig``."""

    def __init__(self, interpolator: Interpolator | None = None) -> None:
        self.interpolator = interpolator or get_interpolator()

    def parse_ensemble(self, text: str) -> EnsembleConfig:
        """Parse and validate an ensemble document.

        Raises:
            EnsembleParseError: On invalid YAML or schema violations
        """
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise EnsembleParseError("unknown", [f"<yaml>: {e}"]) from e
        ensemble = parse_ensemble_data(data)
        logger.debug(
            "Parsed ensemble %s with %d steps", ensemble.name, len(ensemble.flow)
        )
        return ensemble

    def resolve_interpolation(self, template: Any, context: Mapping[str, Any]) -> Any:
        return self.interpolator.resolve(template, context)

    def validate_agent_references(
        self, ensemble: EnsembleConfig, has_agent: Callable[[str], bool]
    ) -> list[str]:
        """Return the agent references in ``ensemble`` that cannot be resolved."""
        missing = []
        for step in ensemble.flow:
            if not has_agent(step.agent) and step.agent not in missing:
                missing.append(step.agent)
        return missing
