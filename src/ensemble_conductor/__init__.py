"""Ensemble Conductor - declarative agent workflow orchestration."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("ensemble-conductor")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "unknown"
