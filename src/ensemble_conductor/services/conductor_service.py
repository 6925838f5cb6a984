"""Application service wiring the engine together for the CLI and web server."""

import importlib
import logging
from pathlib import Path
from typing import Any

from ensemble_conductor.agents.base_agent import BaseAgent
from ensemble_conductor.agents.registry import create_default_registry
from ensemble_conductor.core.config.engine_config import (
    ConfigurationManager,
    EngineConfig,
)
from ensemble_conductor.core.config.ensemble_config import (
    EnsembleConfig,
    EnsembleLoader,
)
from ensemble_conductor.core.errors import (
    ConfigurationError,
    EnsembleNotFoundError,
    EnsembleParseError,
)
from ensemble_conductor.core.execution.async_execution import AsyncExecutionService
from ensemble_conductor.core.execution.execution_state import ExecutionStateRegistry
from ensemble_conductor.core.execution.executor import Executor
from ensemble_conductor.core.execution.notifications import NotificationManager
from ensemble_conductor.core.execution.resumption_manager import ResumptionManager
from ensemble_conductor.storage.file import FileRepository
from ensemble_conductor.storage.repository import Repository

logger = logging.getLogger(__name__)


class ConductorService:
    """Owns one executor and its collaborators for the life of a process."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        repository: Repository | None = None,
        project_dir: Path | str | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.project_dir = Path(project_dir) if project_dir else Path.cwd()
        self.repository = repository or FileRepository(
            self.project_dir / self.config.state_dir / "store"
        )
        self.resumption_manager = ResumptionManager(
            self.repository, ttl=self.config.resumption_ttl
        )
        self.notification_manager = NotificationManager(self.config.notifications)
        self.executor = Executor(
            builtin_registry=create_default_registry(),
            config=self.config,
            resumption_manager=self.resumption_manager,
            notification_manager=self.notification_manager,
        )
        self.status_registry = ExecutionStateRegistry(
            self.repository, close_grace=self.config.status_close_grace
        )
        self.async_service = AsyncExecutionService(self.executor, self.status_registry)
        self.loader = EnsembleLoader()
        self.load_agent_modules(self.config.agent_modules)

    @classmethod
    def from_config_files(
        cls, project_dir: Path | str | None = None
    ) -> "ConductorService":
        manager = ConfigurationManager(project_dir=project_dir)
        return cls(manager.load_engine_config(), project_dir=manager.project_dir)

    @property
    def ensembles_dir(self) -> Path:
        return self.project_dir / self.config.ensembles_dir

    def register_agent(self, agent: BaseAgent) -> None:
        self.executor.register_agent(agent)

    def load_agent_modules(self, modules: list[str]) -> None:
        """Import each module and call its ``register_agents(executor)``.

        Raises:
            ConfigurationError: If a module is missing or has no hook
        """
        for module_name in modules:
            try:
                module = importlib.import_module(module_name)
            except ImportError as e:
                raise ConfigurationError(
                    f"Cannot import agent module '{module_name}': {e}"
                ) from e
            register = getattr(module, "register_agents", None)
            if not callable(register):
                raise ConfigurationError(
                    f"Agent module '{module_name}' has no register_agents()"
                )
            register(self.executor)
            logger.debug("Loaded agents from %s", module_name)

    def list_ensembles(self) -> list[dict[str, Any]]:
        return [
            {
                "name": ensemble.name,
                "description": ensemble.description,
                "steps": len(ensemble.flow),
            }
            for ensemble in self.loader.list_ensembles(self.ensembles_dir)
        ]

    def load_ensemble(self, name: str) -> EnsembleConfig:
        """Find an ensemble by name in the ensembles directory.

        Raises:
            EnsembleNotFoundError: If no ensemble has that name
        """
        ensemble = self.loader.find_ensemble(self.ensembles_dir, name)
        if ensemble is None:
            raise EnsembleNotFoundError(name)
        return ensemble

    def validate_ensemble(self, ensemble: EnsembleConfig) -> list[str]:
        """Return problems that would stop ``ensemble`` from running."""
        missing = self.executor.parser.validate_agent_references(
            ensemble, self.executor.has_agent
        )
        return [f"flow: unknown agent '{ref}'" for ref in missing]

    def check_ensemble(self, ensemble: EnsembleConfig) -> None:
        """Raise ``EnsembleParseError`` if ``ensemble`` references unknown agents."""
        errors = self.validate_ensemble(ensemble)
        if errors:
            raise EnsembleParseError(ensemble.name, errors)

    async def aclose(self) -> None:
        await self.notification_manager.drain()
        await self.async_service.shutdown()
