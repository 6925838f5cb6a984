"""Application services."""

from ensemble_conductor.services.conductor_service import ConductorService

__all__ = ["ConductorService"]
