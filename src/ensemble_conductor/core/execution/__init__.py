"""Ensemble execution: interpolation, state, scoring, suspension and status."""
