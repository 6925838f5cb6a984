"""Core engine: configuration, errors, results and execution."""
