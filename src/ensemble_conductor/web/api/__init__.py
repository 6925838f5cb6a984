"""API module for the conductor web server."""

from ensemble_conductor.services import ConductorService

_conductor_service: ConductorService | None = None


def get_conductor_service() -> ConductorService:
    """Get or create the shared ConductorService instance."""
    global _conductor_service
    if _conductor_service is None:
        _conductor_service = ConductorService.from_config_files()
    return _conductor_service


def set_conductor_service(service: ConductorService | None) -> None:
    """Replace the shared service (used by ``serve`` and tests)."""
    global _conductor_service
    _conductor_service = service
