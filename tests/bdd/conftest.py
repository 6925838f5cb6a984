"""BDD test configuration for ensemble conductor scenarios."""

from typing import Any

import pytest

from ensemble_conductor.core.execution.executor import Executor
from ensemble_conductor.core.execution.resumption_manager import ResumptionManager


@pytest.fixture
def bdd_context(
    executor: Executor, resumption_manager: ResumptionManager
) -> dict[str, Any]:
    """Shared context for BDD scenarios with an in-memory engine."""
    return {
        "executor": executor,
        "resumption_manager": resumption_manager,
        "results": [],
    }
