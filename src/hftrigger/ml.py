"""ML scoring of charm candidates.

The classifier itself (`is_bdt_selected`) only sees three scores. Models
are reached through a `ScorerBackend` with two operations, `load` and
`predict`, so the inference runtime can be swapped without touching the
selection. `TorchScriptBackend` runs TorchScript exports; `CallableBackend`
wraps any Python callable.

Failure policy: a model that cannot be loaded raises `ModelLoadError` and
aborts the run. Malformed inference output raises `InferenceError`, which
`Scorer.predict_scores` logs and turns into `FAILED_SCORES`, a value that
`is_bdt_selected` always rejects.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Protocol, Sequence

import numpy as np

from .bits import EMPTY, OriginType, SelectionBits
from .config import BdtThresholds
from .errors import InferenceError, ModelLoadError
from .models import TrackState

logger = logging.getLogger(__name__)

ScoreTriple = tuple[float, ...]
FAILED_SCORES: ScoreTriple = ()
N_SCORES = 3


def is_bdt_selected(scores: Sequence[float], thresholds: BdtThresholds) -> SelectionBits:
    """Turn (background, prompt, non-prompt) scores into origin bits.

    Fewer than three scores, a NaN score, or a background score above its
    threshold give the empty mask. Prompt and non-prompt are independent.
    """
    if len(scores) < N_SCORES:
        return EMPTY
    bkg, prompt, nonprompt = (float(s) for s in scores[:N_SCORES])
    if math.isnan(bkg) or math.isnan(prompt) or math.isnan(nonprompt):
        return EMPTY
    if bkg > thresholds.bkg:
        return EMPTY
    result = EMPTY
    if prompt > thresholds.prompt:
        result = result.with_bit(OriginType.PROMPT)
    if nonprompt > thresholds.nonprompt:
        result = result.with_bit(OriginType.NON_PROMPT)
    return result


class ScorerBackend(Protocol):
    """Inference runtime seam: load a model once, predict per feature vector."""

    def load(self, path: str | Path, metadata: dict[str, Any]) -> Any:
        ...

    def predict(self, handle: Any, features: np.ndarray) -> Sequence[float]:
        ...


@dataclass
class TorchModelHandle:
    module: Any
    input_shape: tuple[int, ...]
    lock: threading.Lock = field(default_factory=threading.Lock)


class TorchScriptBackend:
    """Run TorchScript classifiers on CPU.

    Models may return a single tensor of scores or a `(labels, scores)`
    pair; in the latter case the second element holds the scores.
    """

    def load(self, path: str | Path, metadata: dict[str, Any]) -> TorchModelHandle:
        torch = _require_torch()
        path = Path(path)
        if not path.is_file():
            raise ModelLoadError("ML model file not found", str(path))
        try:
            module = torch.jit.load(str(path), map_location="cpu")
        except (RuntimeError, OSError, ValueError) as exc:
            raise ModelLoadError(f"Cannot open ML model ({exc})", str(path)) from exc
        module.eval()
        return TorchModelHandle(module=module, input_shape=input_shape_from_metadata(metadata, str(path)))

    def predict(self, handle: TorchModelHandle, features: np.ndarray) -> Sequence[float]:
        torch = _require_torch()
        tensor = torch.as_tensor(np.asarray(features, dtype=np.float32))
        if handle.input_shape:
            try:
                tensor = tensor.reshape(handle.input_shape)
            except RuntimeError as exc:
                raise InferenceError(
                    f"Feature vector of size {tensor.numel()} does not fit input shape {handle.input_shape}"
                ) from exc
        with handle.lock, torch.no_grad():
            try:
                output = handle.module(tensor)
            except RuntimeError as exc:
                raise InferenceError(f"Error running model inference: {exc}") from exc
        if isinstance(output, (tuple, list)):
            if len(output) < 2:
                raise InferenceError(f"Model returned {len(output)} outputs, expected (labels, scores).")
            output = output[1]
        if not hasattr(output, "detach"):
            raise InferenceError(f"Model returned {type(output).__name__}, expected a tensor of scores.")
        return [float(x) for x in output.detach().reshape(-1).tolist()]


class CallableBackend:
    """Backend around a plain callable `features -> scores`.

    `load` ignores the path when a callable was given at construction;
    otherwise it expects `metadata["callable"]`.
    """

    def __init__(self, func: Callable[[np.ndarray], Sequence[float]] | None = None) -> None:
        self.func = func

    def load(self, path: str | Path, metadata: dict[str, Any]) -> Callable[[np.ndarray], Sequence[float]]:
        func = self.func if self.func is not None else metadata.get("callable")
        if func is None or not callable(func):
            raise ModelLoadError("No callable scorer available", str(path))
        return func

    def predict(self, handle: Callable[[np.ndarray], Sequence[float]], features: np.ndarray) -> Sequence[float]:
        try:
            return list(handle(features))
        except Exception as exc:
            raise InferenceError(f"Scorer callable failed: {exc}") from exc


class Scorer:
    """A loaded model bound to its backend."""

    def __init__(self, backend: ScorerBackend, handle: Any, name: str = "") -> None:
        self.backend = backend
        self.handle = handle
        self.name = name

    @classmethod
    def load(
        cls,
        backend: ScorerBackend,
        path: str | Path,
        metadata: dict[str, Any] | None = None,
        name: str = "",
    ) -> "Scorer":
        return cls(backend, backend.load(path, dict(metadata or {})), name=name or Path(path).stem)

    def predict(self, features: Sequence[float]) -> ScoreTriple:
        """Return exactly three scores or raise `InferenceError`."""
        scores = self.backend.predict(self.handle, np.asarray(features, dtype=np.float32))
        if len(scores) != N_SCORES:
            raise InferenceError(f"Model returned {len(scores)} scores, expected {N_SCORES} (multiclass).")
        try:
            return tuple(float(s) for s in scores)
        except (TypeError, ValueError) as exc:
            raise InferenceError(f"Model returned non-numeric scores: {exc}") from exc

    def predict_scores(self, features: Sequence[float]) -> ScoreTriple:
        """Like `predict`, but log inference errors and return `FAILED_SCORES`."""
        try:
            return self.predict(features)
        except InferenceError as exc:
            logger.error("Error running model inference for %s: %s", self.name or "model", exc)
            return FAILED_SCORES


class ModelProvider:
    """File-backed model source.

    Models live at `<directory>/<particle>/<timestamp>.pt` when a positive
    timestamp is requested, else at `<directory>/<particle>.pt`.
    """

    def __init__(self, directory: str | Path, backend: ScorerBackend | None = None) -> None:
        self.directory = Path(directory)
        self.backend = backend if backend is not None else TorchScriptBackend()

    def model_path(self, particle: str, timestamp: int | None = None) -> Path:
        if timestamp is not None and timestamp > 0:
            return self.directory / particle / f"{timestamp}.pt"
        return self.directory / f"{particle}.pt"

    def retrieve(
        self,
        particle: str,
        timestamp: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Scorer:
        path = self.model_path(particle, timestamp)
        if not path.is_file():
            raise ModelLoadError(
                "Error fetching the ML model, maybe it does not exist yet for this timestamp", str(path)
            )
        scorer = Scorer.load(self.backend, path, metadata, name=particle)
        logger.info("Loaded ML model for %s from %s", particle, path)
        return scorer


# Per-prong feature columns, in the order used to train the classifiers.
PRONG_FEATURES_2PRONG = (
    "pT", "dcaPrimXY", "dcaPrimZ",
    "nsigmaPiTPC", "nsigmaKaTPC",
    "nsigmaPiTOF", "nsigmaKaTOF",
)
PRONG_FEATURES_3PRONG = (
    "pT", "dcaPrimXY", "dcaPrimZ",
    "nsigmaPiTPC", "nsigmaKaTPC", "nsigmaPrTPC",
    "nsigmaPiTOF", "nsigmaKaTOF", "nsigmaPrTOF",
)


def feature_names(n_prongs: int) -> list[str]:
    """Column names of the feature vector for a 2- or 3-prong candidate."""
    per_prong = _prong_features(n_prongs)
    return [f"{name}{i}" for i in range(1, n_prongs + 1) for name in per_prong]


def build_features(tracks: Sequence[TrackState]) -> np.ndarray:
    """Concatenate per-prong features of `tracks` into a float32 vector."""
    per_prong = _prong_features(len(tracks))
    values: list[float] = []
    for track in tracks:
        row = {
            "pT": track.pt,
            "dcaPrimXY": track.dca_xy,
            "dcaPrimZ": track.dca_z,
            "nsigmaPiTPC": track.tpc_nsigma_pi,
            "nsigmaKaTPC": track.tpc_nsigma_ka,
            "nsigmaPrTPC": track.tpc_nsigma_pr,
            "nsigmaPiTOF": track.tof_nsigma_pi,
            "nsigmaKaTOF": track.tof_nsigma_ka,
            "nsigmaPrTOF": track.tof_nsigma_pr,
        }
        values.extend(row[name] for name in per_prong)
    return np.asarray(values, dtype=np.float32)


def _prong_features(n_prongs: int) -> tuple[str, ...]:
    if n_prongs == 2:
        return PRONG_FEATURES_2PRONG
    if n_prongs == 3:
        return PRONG_FEATURES_3PRONG
    raise ValueError(f"Feature vectors are defined for 2- and 3-prong candidates, got {n_prongs} prongs.")


def input_shape_from_metadata(metadata: dict[str, Any], model_name: str = "") -> tuple[int, ...]:
    """Read `input_shape` from metadata; a negative batch dimension becomes 1."""
    shape = [int(x) for x in metadata.get("input_shape", ())]
    if shape and shape[0] < 0:
        logger.warning(
            "Model %s has a negative input shape, likely from a converted tree ensemble; setting it to 1.",
            model_name or "<unnamed>",
        )
        shape[0] = 1
    return tuple(shape)


def _require_torch():
    """Import torch lazily and provide a clear installation hint on failure."""
    try:
        import torch  # type: ignore
    except ModuleNotFoundError as exc:
        raise ModuleNotFoundError(
            "torch is required for TorchScript models. Install the 'ml' extra."
        ) from exc
    return torch
