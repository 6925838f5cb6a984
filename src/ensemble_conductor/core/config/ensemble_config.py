"""Ensemble configuration models and loading.

Ensemble documents are validated once into frozen pydantic models; the rest
of the engine only ever sees these typed, immutable objects.
"""

import logging
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ensemble_conductor.core.errors import EnsembleParseError

logger = logging.getLogger(__name__)

BackoffStrategy = Literal["fixed", "linear", "exponential"]
FailureAction = Literal["retry", "continue", "abort"]
AggregationMethod = Literal["weighted_average", "minimum", "geometric_mean"]
NotificationEvent = Literal[
    "execution.started",
    "execution.completed",
    "execution.failed",
    "execution.suspended",
]


class _Frozen(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)


class StateConfig(_Frozen):
    """Ensemble-level state: optional schema plus initial values."""

    schema_: dict[str, Any] | None = Field(default=None, alias="schema")
    initial: dict[str, Any] = Field(default_factory=dict)


class StepStateConfig(_Frozen):
    """Per-step capability declaration: readable and writable state keys."""

    use: list[str] = Field(default_factory=list)
    set_: list[str] = Field(default_factory=list, alias="set")


class ScoringThresholds(_Frozen):
    minimum: float | None = Field(default=None, ge=0, le=1)
    target: float | None = Field(default=None, ge=0, le=1)
    excellent: float | None = Field(default=None, ge=0, le=1)


class StepScoringConfig(_Frozen):
    """Quality gate for a single step."""

    evaluator: str = Field(min_length=1)
    thresholds: ScoringThresholds | None = None
    criteria: dict[str, str] | list[Any] | None = None
    on_failure: FailureAction = "retry"
    max_retries: int | None = Field(default=None, ge=0)
    require_improvement: bool = False
    min_improvement: float = Field(default=0.05, ge=0, le=1)


class EnsembleScoringConfig(_Frozen):
    """Ensemble-wide scoring defaults, retry policy and aggregation."""

    enabled: bool = False
    default_thresholds: ScoringThresholds = Field(
        default_factory=lambda: ScoringThresholds(minimum=0.7)
    )
    max_retries: int = Field(default=3, ge=0)
    backoff_strategy: BackoffStrategy = "exponential"
    initial_backoff: float = Field(default=1000, ge=0)  # milliseconds
    criteria: dict[str, str] | list[Any] | None = None
    aggregation: AggregationMethod = "weighted_average"
    weights: dict[str, float] | None = None


class NotificationConfig(_Frozen):
    """A webhook to call on execution lifecycle events."""

    type: Literal["webhook"] = "webhook"
    url: str = Field(min_length=1)
    events: list[NotificationEvent] = Field(min_length=1)
    secret: str | None = None
    retries: int | None = Field(default=None, ge=0)
    timeout: float | None = Field(default=None, gt=0)


class FlowStep(_Frozen):
    """One node in the sequential flow."""

    agent: str = Field(min_length=1)
    id: str | None = None
    input: Any = None
    state: StepStateConfig | None = None
    scoring: StepScoringConfig | None = None
    timeout: float | None = Field(default=None, gt=0)
    config: dict[str, Any] = Field(default_factory=dict)

    @property
    def agent_name(self) -> str:
        """Agent name with any ``@version`` suffix removed."""
        return self.agent.split("@", 1)[0]

    @property
    def context_key(self) -> str:
        """Key under which this step's output is stored in the context."""
        return self.id or self.agent_name


class EnsembleConfig(_Frozen):
    """A named, ordered flow of agent steps."""

    name: str = Field(min_length=1)
    description: str | None = None
    flow: list[FlowStep]
    state: StateConfig | None = None
    scoring: EnsembleScoringConfig | None = None
    output: Any = None
    notifications: list[NotificationConfig] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dict that ``parse_ensemble_data`` accepts."""
        return self.model_dump(mode="json", by_alias=True)


def _format_validation_errors(error: ValidationError) -> list[str]:
    """Flatten pydantic errors into ``"field.path: message"`` strings."""
    messages = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"]) or "<root>"
        messages.append(f"{location}: {err['msg']}")
    return messages


def parse_ensemble_data(data: Any) -> EnsembleConfig:
    """Validate a raw mapping into an ``EnsembleConfig``.

    Raises:
        EnsembleParseError: With one entry per invalid field
    """
    if not isinstance(data, dict):
        raise EnsembleParseError("unknown", ["<root>: ensemble must be a mapping"])

    name = data.get("name") if isinstance(data.get("name"), str) else None
    try:
        return EnsembleConfig.model_validate(data)
    except ValidationError as e:
        raise EnsembleParseError(name or "unknown", _format_validation_errors(e)) from e


class EnsembleLoader:
    """Loads ensemble configurations from files."""

    def load_from_file(self, file_path: str | Path) -> EnsembleConfig:
        """Load ensemble configuration from a YAML file."""
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Ensemble file not found: {file_path}")

        with open(path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise EnsembleParseError(path.stem, [f"<yaml>: {e}"]) from e

        return parse_ensemble_data(data)

    def list_ensembles(self, directory: str | Path) -> list[EnsembleConfig]:
        """List all ensemble configurations in a directory and subdirectories."""
        dir_path = Path(directory)
        if not dir_path.exists():
            return []

        ensembles = []
        files = sorted([*dir_path.rglob("*.yaml"), *dir_path.rglob("*.yml")])
        for ensemble_file in files:
            try:
                ensembles.append(self.load_from_file(ensemble_file))
            except EnsembleParseError as e:
                logger.debug("Skipping invalid ensemble %s: %s", ensemble_file, e)
        return ensembles

    def find_ensemble(self, directory: str | Path, name: str) -> EnsembleConfig | None:
        """Find an ensemble by name in a directory tree."""
        for ensemble in self.list_ensembles(directory):
            if ensemble.name == name:
                return ensemble
        return None
