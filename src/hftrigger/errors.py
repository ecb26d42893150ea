"""Exception hierarchy for the heavy-flavour trigger selection.

Configuration, calibration and model-load errors are run-level failures and
are meant to propagate. `InferenceError` is raised per candidate by scorer
backends and is caught by the scoring layer.
"""

from __future__ import annotations


class HfTriggerError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(HfTriggerError, ValueError):
    """Invalid cut configuration or API misuse (unknown species, list lengths)."""


class CalibrationError(HfTriggerError):
    """Calibration maps are missing, malformed or physically invalid."""

    def __init__(self, message: str, run: int | None = None) -> None:
        self.run = run
        if run is not None:
            message = f"{message} (run {run})"
        super().__init__(message)


class ModelLoadError(HfTriggerError):
    """An ML model could not be retrieved or opened."""

    def __init__(self, message: str, path: str | None = None) -> None:
        self.path = path
        if path is not None:
            message = f"{message}: {path}"
        super().__init__(message)


class InferenceError(HfTriggerError):
    """A scorer produced malformed output for one feature vector."""
