"""Engine and ensemble configuration."""

from ensemble_conductor.core.config.engine_config import (
    ConfigurationManager,
    EngineConfig,
)
from ensemble_conductor.core.config.ensemble_config import (
    EnsembleConfig,
    EnsembleLoader,
    EnsembleScoringConfig,
    FlowStep,
    NotificationConfig,
    ScoringThresholds,
    StateConfig,
    StepScoringConfig,
    StepStateConfig,
    parse_ensemble_data,
)

__all__ = [
    "ConfigurationManager",
    "EngineConfig",
    "EnsembleConfig",
    "EnsembleLoader",
    "EnsembleScoringConfig",
    "FlowStep",
    "NotificationConfig",
    "ScoringThresholds",
    "StateConfig",
    "StepScoringConfig",
    "StepStateConfig",
    "parse_ensemble_data",
]
