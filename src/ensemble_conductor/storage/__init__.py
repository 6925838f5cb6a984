"""Repository contract and built-in backends."""

from ensemble_conductor.storage.file import FileRepository
from ensemble_conductor.storage.memory import MemoryRepository
from ensemble_conductor.storage.repository import Repository

__all__ = ["FileRepository", "MemoryRepository", "Repository"]
