"""Immutable, access-tracked state container for one ensemble run.

Steps declare which keys they may read (``use``) and write (``set``). A step
only ever sees a read-only projection of its declared keys, and writes to
undeclared keys are dropped with a warning. Every write produces a new
``StateManager``; existing instances never change.
"""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Literal

from ensemble_conductor.core.config.ensemble_config import StateConfig, StepStateConfig

logger = logging.getLogger(__name__)

AccessOperation = Literal["read", "write"]


@dataclass(frozen=True)
class AccessLogEntry:
    """A single read or write of a state key by an agent."""

    agent: str
    key: str
    operation: AccessOperation
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent": self.agent,
            "key": self.key,
            "operation": self.operation,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AccessLogEntry:
        return cls(
            agent=data["agent"],
            key=data["key"],
            operation=data["operation"],
            timestamp=float(data["timestamp"]),
        )


@dataclass(frozen=True)
class PendingUpdates:
    """Writes and access-log entries accumulated by an agent's state context."""

    updates: dict[str, Any] = field(default_factory=dict)
    access_log: list[AccessLogEntry] = field(default_factory=list)


@dataclass(frozen=True)
class AgentStateContext:
    """What an agent sees of state: a frozen projection plus a setter."""

    state: Mapping[str, Any]
    set_state: Callable[[Mapping[str, Any]], None]


def _declared_reads(declaration: StepStateConfig | None) -> list[str]:
    return list(declaration.use) if declaration else []


def _declared_writes(declaration: StepStateConfig | None) -> set[str]:
    return set(declaration.set_) if declaration else set()


class StateManager:
    """Per-execution state with a read/write capability model."""

    def __init__(
        self,
        config: StateConfig | None = None,
        state: Mapping[str, Any] | None = None,
        access_log: tuple[AccessLogEntry, ...] = (),
    ) -> None:
        self._config = config or StateConfig()
        if state is None:
            state = self._config.initial
        self._state: dict[str, Any] = copy.deepcopy(dict(state))
        self._access_log = tuple(access_log)

    @property
    def config(self) -> StateConfig:
        return self._config

    @property
    def access_log(self) -> tuple[AccessLogEntry, ...]:
        return self._access_log

    def get_state(self) -> Mapping[str, Any]:
        """Read-only view of a copy of the full state."""
        return MappingProxyType(copy.deepcopy(self._state))

    def _derive(
        self, state: dict[str, Any], new_log: list[AccessLogEntry]
    ) -> StateManager:
        return StateManager(self._config, state, self._access_log + tuple(new_log))

    def _filter_writes(
        self,
        agent_name: str,
        updates: Mapping[str, Any],
        declaration: StepStateConfig | None,
    ) -> dict[str, Any]:
        allowed = _declared_writes(declaration)
        accepted = {}
        for key, value in updates.items():
            if key in allowed:
                accepted[key] = value
            else:
                logger.warning(
                    "Agent %s attempted to set undeclared state key '%s'; "
                    "write dropped",
                    agent_name,
                    key,
                )
        return accepted

    def get_state_for_agent(
        self, agent_name: str, declaration: StepStateConfig | None
    ) -> tuple[AgentStateContext, Callable[[], PendingUpdates]]:
        """Build the agent's state projection and a drain for its writes.

        Each declared readable key present in state is logged as a read when
        the projection is built. The setter only records pending writes; call
        the returned function to collect them, then pass them to
        ``apply_pending_updates``.
        """
        new_log: list[AccessLogEntry] = []
        projection: dict[str, Any] = {}
        for key in _declared_reads(declaration):
            if key in self._state:
                projection[key] = copy.deepcopy(self._state[key])
                new_log.append(AccessLogEntry(agent_name, key, "read", time.time()))

        pending: dict[str, Any] = {}

        def set_state(updates: Mapping[str, Any]) -> None:
            accepted = self._filter_writes(agent_name, updates, declaration)
            for key, value in accepted.items():
                pending[key] = value
                new_log.append(AccessLogEntry(agent_name, key, "write", time.time()))

        def get_pending_updates() -> PendingUpdates:
            drained = PendingUpdates(dict(pending), list(new_log))
            pending.clear()
            new_log.clear()
            return drained

        context = AgentStateContext(MappingProxyType(projection), set_state)
        return context, get_pending_updates

    def set_state_from_member(
        self,
        agent_name: str,
        updates: Mapping[str, Any],
        declaration: StepStateConfig | None,
    ) -> StateManager:
        """Apply an agent's writes in one shot, returning a new manager."""
        accepted = self._filter_writes(agent_name, updates, declaration)
        new_log = [
            AccessLogEntry(agent_name, key, "write", time.time()) for key in accepted
        ]
        return self.apply_pending_updates(accepted, new_log)

    def apply_pending_updates(
        self, updates: Mapping[str, Any], new_log: list[AccessLogEntry]
    ) -> StateManager:
        """Merge pending writes and log entries into a new manager.

        Returns ``self`` when there is nothing to apply.
        """
        if not updates and not new_log:
            return self
        return self._derive({**self._state, **updates}, list(new_log))

    def get_access_report(self) -> dict[str, Any]:
        """Report initial keys never read, and per-agent access patterns."""
        read_keys = {e.key for e in self._access_log if e.operation == "read"}
        unused = [key for key in self._config.initial if key not in read_keys]

        patterns: dict[str, dict[str, list[str]]] = {}
        for entry in self._access_log:
            agent = patterns.setdefault(entry.agent, {"reads": [], "writes": []})
            bucket = agent["reads" if entry.operation == "read" else "writes"]
            if entry.key not in bucket:
                bucket.append(entry.key)

        return {"unused_keys": unused, "access_patterns": patterns}

    def snapshot(self) -> dict[str, Any]:
        """Serialize state and access log for suspension."""
        return {
            "state": copy.deepcopy(self._state),
            "access_log": [entry.to_dict() for entry in self._access_log],
        }

    @classmethod
    def from_snapshot(
        cls, config: StateConfig | None, snapshot: Mapping[str, Any]
    ) -> StateManager:
        """Restore a manager captured by ``snapshot()``."""
        log = tuple(AccessLogEntry.from_dict(e) for e in snapshot.get("access_log", []))
        return cls(config, snapshot.get("state", {}), log)
