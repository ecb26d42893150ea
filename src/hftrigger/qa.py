"""QA fill recording.

Selections report diagnostic fill points here instead of owning histograms.
Binning and rendering belong to the consumer; `as_array` hands the points
over as numpy arrays.
"""

from __future__ import annotations

from collections import defaultdict

import numpy as np


class FillRecorder:
    """Collect named 1-D or 2-D fill points."""

    def __init__(self) -> None:
        self._points: dict[str, list[tuple[float, ...]]] = defaultdict(list)

    def fill(self, name: str, x: float, y: float | None = None) -> None:
        self._points[name].append((float(x),) if y is None else (float(x), float(y)))

    def count(self, name: str) -> int:
        return len(self._points.get(name, ()))

    def names(self) -> list[str]:
        return sorted(self._points)

    def as_array(self, name: str) -> np.ndarray:
        """Return fills of `name` with shape `(n,)` for 1-D or `(n, 2)` for 2-D points."""
        points = self._points.get(name, [])
        if not points:
            return np.empty((0,), dtype=np.float64)
        arr = np.asarray(points, dtype=np.float64)
        return arr[:, 0] if arr.shape[1] == 1 else arr

    def clear(self) -> None:
        self._points.clear()
