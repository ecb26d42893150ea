"""TPC PID post-calibration lookup.

Calibration maps are 3-D tables of Nsigma mean and width binned in
(TPC cluster count, TPC inner-wall momentum, pseudorapidity). Bin lookup
follows the histogram convention: bin 1 is the first bin, 0 is underflow and
N+1 overflow. Out-of-range values are clamped to the first/last bin.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from .errors import CalibrationError, ConfigurationError
from .models import TrackState
from .pid import PIDSpecies

logger = logging.getLogger(__name__)

_SPECIES_TAGS: dict[PIDSpecies, str] = {
    PIDSpecies.ELECTRON: "el",
    PIDSpecies.PION: "pi",
    PIDSpecies.PROTON: "pr",
}
_AXIS_KEYS = ("ncls_edges", "pin_edges", "eta_edges")


@dataclass(frozen=True, eq=False)
class CalibrationMap:
    """Mean/width tables for one species with their three bin-edge axes."""

    ncls_edges: np.ndarray
    pin_edges: np.ndarray
    eta_edges: np.ndarray
    mean: np.ndarray
    sigma: np.ndarray

    def __post_init__(self) -> None:
        edges = []
        for name in _AXIS_KEYS:
            arr = np.array(getattr(self, name), dtype=np.float64)
            if arr.ndim != 1 or arr.size < 2 or np.any(np.diff(arr) <= 0.0):
                raise CalibrationError(f"Calibration axis '{name}' must be strictly increasing edges.")
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)
            edges.append(arr)
        shape = tuple(arr.size - 1 for arr in edges)
        for name in ("mean", "sigma"):
            table = np.array(getattr(self, name), dtype=np.float64)
            if table.shape != shape:
                raise CalibrationError(
                    f"Calibration table '{name}' has shape {table.shape}, expected {shape}."
                )
            table.setflags(write=False)
            object.__setattr__(self, name, table)
        if not np.all(self.sigma > 0.0):
            raise CalibrationError("Calibration widths must be strictly positive.")

    @property
    def shape(self) -> tuple[int, int, int]:
        return self.mean.shape  # type: ignore[return-value]

    def locate(self, tpc_ncls: float, tpc_pin: float, eta: float) -> tuple[int, int, int]:
        """Return clamped 1-based bin numbers on the three axes."""
        return (
            find_bin_clamped(self.ncls_edges, tpc_ncls),
            find_bin_clamped(self.pin_edges, tpc_pin),
            find_bin_clamped(self.eta_edges, eta),
        )

    def lookup(self, tpc_ncls: float, tpc_pin: float, eta: float) -> tuple[float, float]:
        """Return `(mean, sigma)` for the bin containing the given observables."""
        ix, iy, iz = self.locate(tpc_ncls, tpc_pin, eta)
        return float(self.mean[ix - 1, iy - 1, iz - 1]), float(self.sigma[ix - 1, iy - 1, iz - 1])


@dataclass(frozen=True)
class PostCalibration:
    """Per-species calibration maps for one processing run.

    Kaons have no dedicated map: the pion map is used instead.
    """

    maps: dict[PIDSpecies, CalibrationMap] = field(default_factory=dict)
    run: int | None = None

    def map_for(self, species: PIDSpecies) -> CalibrationMap:
        species = _as_species(species)
        key = PIDSpecies.PION if species == PIDSpecies.KAON else species
        try:
            return self.maps[key]
        except KeyError as exc:
            raise CalibrationError(
                f"No post-calibration map for species {species.name}", run=self.run
            ) from exc


def find_bin_clamped(edges: np.ndarray, value: float) -> int:
    """Histogram bin number of `value`, clamped into `[1, len(edges) - 1]`."""
    n_bins = len(edges) - 1
    found = int(np.searchsorted(edges, value, side="right"))
    if found < 1:
        return 1
    return min(found, n_bins)


def raw_tpc_nsigma(track: TrackState, species: PIDSpecies) -> float:
    """Return the uncorrected TPC Nsigma of `track` for `species`."""
    species = _as_species(species)
    if species == PIDSpecies.KAON:
        return track.tpc_nsigma_ka
    if species == PIDSpecies.PION:
        return track.tpc_nsigma_pi
    if species == PIDSpecies.PROTON:
        return track.tpc_nsigma_pr
    return track.tpc_nsigma_el


def corrected_nsigma(post_calibration: PostCalibration, track: TrackState, species: PIDSpecies) -> float:
    """Post-calibrated TPC Nsigma: `(nsigma - mean) / sigma` at the track's bin."""
    species = _as_species(species)
    nsigma = raw_tpc_nsigma(track, species)
    calib_map = post_calibration.map_for(species)
    mean, sigma = calib_map.lookup(track.tpc_ncls_found, track.tpc_inner_param, track.eta)
    return (nsigma - mean) / sigma


def tpc_nsigma(
    track: TrackState,
    species: PIDSpecies,
    compute_tpc_post_calib: bool = False,
    post_calibration: PostCalibration | None = None,
) -> float:
    """Raw or post-calibrated TPC Nsigma depending on `compute_tpc_post_calib`."""
    if not compute_tpc_post_calib:
        return raw_tpc_nsigma(track, species)
    if post_calibration is None:
        raise ConfigurationError("TPC post-calibration requested but no calibration maps were provided.")
    return corrected_nsigma(post_calibration, track, species)


def load_post_calibration(path: str | Path, run: int | None = None) -> PostCalibration:
    """Load calibration maps from an `.npz` archive.

    Expected arrays: `ncls_edges`, `pin_edges`, `eta_edges` (shared axes) and
    `<tag>_mean` / `<tag>_sigma` for each available tag among `el`, `pi`, `pr`.
    """
    path = Path(path)
    if not path.is_file():
        raise CalibrationError(f"Calibration file not found: {path}", run=run)
    try:
        with np.load(path) as archive:
            arrays = {key: archive[key] for key in archive.files}
    except (OSError, ValueError) as exc:
        raise CalibrationError(f"Cannot read calibration file {path}: {exc}", run=run) from exc

    missing = [key for key in _AXIS_KEYS if key not in arrays]
    if missing:
        raise CalibrationError(f"Calibration file {path} lacks axes {missing}", run=run)
    maps: dict[PIDSpecies, CalibrationMap] = {}
    for species, tag in _SPECIES_TAGS.items():
        mean_key, sigma_key = f"{tag}_mean", f"{tag}_sigma"
        if mean_key not in arrays and sigma_key not in arrays:
            continue
        if mean_key not in arrays or sigma_key not in arrays:
            raise CalibrationError(f"Calibration file {path} has only one of {mean_key}/{sigma_key}", run=run)
        maps[species] = CalibrationMap(
            ncls_edges=arrays["ncls_edges"],
            pin_edges=arrays["pin_edges"],
            eta_edges=arrays["eta_edges"],
            mean=arrays[mean_key],
            sigma=arrays[sigma_key],
        )
    if not maps:
        raise CalibrationError(f"Calibration file {path} contains no species tables", run=run)
    return PostCalibration(maps=maps, run=run)


def save_post_calibration(path: str | Path, post_calibration: PostCalibration) -> None:
    """Write calibration maps in the layout read by `load_post_calibration`."""
    if not post_calibration.maps:
        raise CalibrationError("Nothing to save: no calibration maps.")
    reference = next(iter(post_calibration.maps.values()))
    arrays: dict[str, np.ndarray] = {key: getattr(reference, key) for key in _AXIS_KEYS}
    for species, calib_map in post_calibration.maps.items():
        tag = _SPECIES_TAGS[species]
        arrays[f"{tag}_mean"] = calib_map.mean
        arrays[f"{tag}_sigma"] = calib_map.sigma
    np.savez(Path(path), **arrays)


class CalibrationProvider:
    """File-backed calibration source: one `<run>.npz` per run, loaded once."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._cache: dict[int, PostCalibration] = {}

    def get(self, run: int) -> PostCalibration:
        if run not in self._cache:
            path = self.directory / f"{run}.npz"
            self._cache[run] = load_post_calibration(path, run=run)
            logger.info("Loaded TPC post-calibration for run %d from %s", run, path)
        return self._cache[run]


def _as_species(species: PIDSpecies | int) -> PIDSpecies:
    try:
        return PIDSpecies(species)
    except ValueError as exc:
        raise ConfigurationError(f"Wrong PID species {species!r} selected.") from exc
