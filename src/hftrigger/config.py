"""Selection configuration: frozen cut containers and the JSON loader.

Every section has defaults so an empty JSON object is a valid configuration.
Structural problems (unknown keys, cut lists of different lengths, bad
values) raise `ConfigurationError` at load time.
"""

from __future__ import annotations

import json
import logging
from bisect import bisect_right
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Sequence

from .errors import ConfigurationError
from .models import TrackState

logger = logging.getLogger(__name__)

CHARM_SPECIES = ("D0", "Dplus", "Ds", "Lc", "Xic")
MAX_DALITZ_CUTS = 8


def find_bin(bin_edges: Sequence[float], value: float) -> int:
    """0-based bin index of `value` in `bin_edges`, or -1 outside the range."""
    if not bin_edges or value < bin_edges[0] or value >= bin_edges[-1]:
        return -1
    return bisect_right(bin_edges, value) - 1


@dataclass(frozen=True)
class BeautyTrackCuts:
    """Bachelor-track cuts with a per-pT-bin DCAxy window."""

    pt_bins: tuple[float, ...] = (0.0, 0.5, 1.0, 1.5, 2.0, 3.0, 1000.0)
    min_dca_xy: tuple[float, ...] = (0.0025, 0.0025, 0.0025, 0.0, 0.0, 0.0)
    max_dca_xy: tuple[float, ...] = (10.0, 10.0, 10.0, 10.0, 10.0, 10.0)
    pt_min_soft_pion: float = 0.1
    pt_min_bachelor: float = 0.5
    max_abs_eta: float = 0.8
    max_abs_dca_z: float = 2.0

    def __post_init__(self) -> None:
        n_bins = len(self.pt_bins) - 1
        if n_bins < 1:
            raise ConfigurationError("beauty.pt_bins needs at least two edges.")
        if any(hi <= lo for lo, hi in zip(self.pt_bins, self.pt_bins[1:])):
            raise ConfigurationError("beauty.pt_bins must be strictly increasing.")
        if len(self.min_dca_xy) != n_bins or len(self.max_dca_xy) != n_bins:
            raise ConfigurationError(
                f"beauty DCAxy cut lists must have {n_bins} entries (one per pT bin), "
                f"got {len(self.min_dca_xy)} and {len(self.max_dca_xy)}."
            )

    def dca_window(self, pt_bin: int) -> tuple[float, float]:
        return self.min_dca_xy[pt_bin], self.max_dca_xy[pt_bin]


@dataclass(frozen=True)
class FemtoCuts:
    """Proton selection and k* threshold for the femtoscopy triggers."""

    min_proton_pt: float = 0.5
    max_nsigma_proton: float = 3.0
    proton_only_tof: bool = False
    max_abs_eta: float = 0.8
    max_relative_momentum: float = 0.8


@dataclass(frozen=True)
class CharmPidCuts:
    """TPC/TOF Nsigma thresholds for charm-daughter identification."""

    nsigma_tpc_pion_kaon_dzero: float = 3.0
    nsigma_tof_pion_kaon_dzero: float = 3.0
    nsigma_tpc_kaon_3prong: float = 3.0
    nsigma_tof_kaon_3prong: float = 3.0
    nsigma_tpc_proton_lc: float = 3.0
    nsigma_tof_proton_lc: float = 3.0


@dataclass(frozen=True)
class MassWindows:
    """Half-widths of the mass windows, in GeV/c^2."""

    delta_mass_charm: float = 0.04
    delta_mass_phi: float = 0.02
    delta_mass_beauty: float = 0.3
    delta_mass_gamma_charm: float = 0.05
    delta_mass_dstar: float = 0.01


@dataclass(frozen=True)
class HighPtCuts:
    min_pt_2prong: float = 8.0
    min_pt_3prong: float = 8.0


@dataclass(frozen=True)
class GammaCuts:
    max_abs_eta: float = 0.8
    min_v0_radius: float = 0.0
    max_v0_radius: float = 180.0
    alpha_scale: float = 0.95
    qt_scale: float = 0.05
    max_abs_psi_pair: float = 0.1
    min_cos_pa: float = 0.85


@dataclass(frozen=True)
class ClusterCuts:
    """Calorimeter cluster window; both bounds inclusive."""

    min_time: float = -200.0
    max_time: float = 200.0
    min_m02: float = 0.0
    max_m02: float = 1.0


@dataclass(frozen=True)
class DalitzTrackCut:
    """Electron-candidate track cut used by the Dalitz tagger."""

    name: str = "electron"
    min_pt: float = 0.15
    max_abs_eta: float = 0.9
    max_abs_dca_xy: float = 1.0
    max_abs_dca_z: float = 3.0
    max_abs_tpc_nsigma_el: float = 3.0
    min_tpc_nsigma_pi: float = 3.0
    min_tpc_ncls: int = 70
    min_tpc_inner_param: float = 0.1

    def is_selected(self, track: TrackState) -> bool:
        return (
            track.pt >= self.min_pt
            and track.tpc_inner_param >= self.min_tpc_inner_param
            and abs(track.eta) <= self.max_abs_eta
            and abs(track.dca_xy) <= self.max_abs_dca_xy
            and abs(track.dca_z) <= self.max_abs_dca_z
            and abs(track.tpc_nsigma_el) <= self.max_abs_tpc_nsigma_el
            and track.tpc_nsigma_pi >= self.min_tpc_nsigma_pi
            and track.tpc_ncls_found >= self.min_tpc_ncls
        )


@dataclass(frozen=True)
class DalitzPairCut:
    """Electron-pair cut: e+e- invariant-mass window and minimum pair pT."""

    name: str = "dalitz_mass"
    min_mass: float = 0.0
    max_mass: float = 0.015
    min_pt: float = 0.0


@dataclass(frozen=True)
class DalitzConfig:
    """Paired track and pair cuts; cut i of each list forms Dalitz bit i."""

    track_cuts: tuple[DalitzTrackCut, ...] = ()
    pair_cuts: tuple[DalitzPairCut, ...] = ()

    def __post_init__(self) -> None:
        if len(self.track_cuts) != len(self.pair_cuts):
            raise ConfigurationError(
                f"Dalitz track cuts ({len(self.track_cuts)}) and pair cuts ({len(self.pair_cuts)}) "
                "must have the same length."
            )
        if len(self.track_cuts) > MAX_DALITZ_CUTS:
            raise ConfigurationError(f"At most {MAX_DALITZ_CUTS} Dalitz cut pairs are supported.")

    @property
    def enabled(self) -> bool:
        return bool(self.track_cuts)


@dataclass(frozen=True)
class BdtThresholds:
    """Score thresholds for one charm species (background, prompt, non-prompt)."""

    bkg: float = 0.1
    prompt: float = 0.5
    nonprompt: float = 0.5


@dataclass(frozen=True)
class MlConfig:
    """ML scoring setup: which species are scored and with which thresholds."""

    enabled_species: tuple[str, ...] = ()
    thresholds: dict[str, BdtThresholds] = field(default_factory=dict)
    input_shapes: dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in (*self.enabled_species, *self.thresholds, *self.input_shapes):
            if name not in CHARM_SPECIES:
                raise ConfigurationError(
                    f"Unknown charm species '{name}' in ml section. Use one of {', '.join(CHARM_SPECIES)}."
                )

    def thresholds_for(self, species: str) -> BdtThresholds:
        return self.thresholds.get(species, BdtThresholds())


@dataclass(frozen=True)
class FilterConfig:
    """Complete configuration of the event filter."""

    beauty: BeautyTrackCuts = field(default_factory=BeautyTrackCuts)
    femto: FemtoCuts = field(default_factory=FemtoCuts)
    charm_pid: CharmPidCuts = field(default_factory=CharmPidCuts)
    mass_windows: MassWindows = field(default_factory=MassWindows)
    high_pt: HighPtCuts = field(default_factory=HighPtCuts)
    gamma: GammaCuts = field(default_factory=GammaCuts)
    clusters: ClusterCuts = field(default_factory=ClusterCuts)
    dalitz: DalitzConfig = field(default_factory=DalitzConfig)
    ml: MlConfig = field(default_factory=MlConfig)
    compute_tpc_post_calib: bool = False
    qa_level: int = 0


_SECTIONS: dict[str, type] = {
    "beauty": BeautyTrackCuts,
    "femto": FemtoCuts,
    "charm_pid": CharmPidCuts,
    "mass_windows": MassWindows,
    "high_pt": HighPtCuts,
    "gamma": GammaCuts,
    "clusters": ClusterCuts,
}


def filter_config_from_dict(data: dict[str, Any]) -> FilterConfig:
    """Build a `FilterConfig` from a parsed JSON mapping."""
    if not isinstance(data, dict):
        raise ConfigurationError("Filter configuration must be a JSON object.")
    known = {f.name for f in fields(FilterConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")

    kwargs: dict[str, Any] = {}
    for name, cls in _SECTIONS.items():
        if name in data:
            kwargs[name] = _build_section(cls, data[name], name)
    if "ml" in data:
        kwargs["ml"] = _build_ml(data["ml"])
    if "dalitz" in data:
        kwargs["dalitz"] = _build_dalitz(data["dalitz"])
    if "compute_tpc_post_calib" in data:
        kwargs["compute_tpc_post_calib"] = bool(data["compute_tpc_post_calib"])
    if "qa_level" in data:
        qa_level = data["qa_level"]
        if isinstance(qa_level, bool) or not isinstance(qa_level, int) or qa_level < 0:
            raise ConfigurationError(f"qa_level must be a non-negative integer, got {qa_level!r}.")
        kwargs["qa_level"] = qa_level
    return FilterConfig(**kwargs)


def load_filter_config(path: str | Path) -> FilterConfig:
    """Read and validate a JSON filter configuration from disk."""
    raw = Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Configuration {path} is not valid JSON: {exc}") from exc
    config = filter_config_from_dict(data)
    logger.info(
        "Loaded filter configuration from %s (post-calibration=%s, ML species=%s, QA level=%d)",
        path,
        config.compute_tpc_post_calib,
        ",".join(config.ml.enabled_species) or "none",
        config.qa_level,
    )
    return config


def _build_section(cls: type, payload: Any, section: str):
    """Instantiate one frozen cut section, converting lists into tuples."""
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Configuration section '{section}' must be an object.")
    allowed = {f.name for f in fields(cls)}
    unknown = sorted(set(payload) - allowed)
    if unknown:
        raise ConfigurationError(f"Unknown keys in section '{section}': {', '.join(unknown)}")
    values: dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(value, list):
            if not all(isinstance(x, (int, float)) and not isinstance(x, bool) for x in value):
                raise ConfigurationError(f"List '{section}.{key}' must hold numbers only.")
            values[key] = tuple(float(x) for x in value)
        elif isinstance(value, (bool, str)):
            values[key] = value
        elif isinstance(value, (int, float)):
            values[key] = float(value)
        else:
            raise ConfigurationError(f"Unsupported value {value!r} for '{section}.{key}'.")
    return cls(**values)


def _build_ml(payload: Any) -> MlConfig:
    if not isinstance(payload, dict):
        raise ConfigurationError("Configuration section 'ml' must be an object.")
    unknown = sorted(set(payload) - {"enabled_species", "thresholds", "input_shapes"})
    if unknown:
        raise ConfigurationError(f"Unknown keys in section 'ml': {', '.join(unknown)}")
    species = payload.get("enabled_species", [])
    if not isinstance(species, list):
        raise ConfigurationError("ml.enabled_species must be a list of species names.")
    thresholds = {
        str(name): _build_section(BdtThresholds, values, f"ml.thresholds.{name}")
        for name, values in _mapping(payload, "thresholds").items()
    }
    input_shapes = {}
    for name, size in _mapping(payload, "input_shapes").items():
        if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
            raise ConfigurationError(f"ml.input_shapes.{name} must be a positive integer, got {size!r}.")
        input_shapes[str(name)] = size
    return MlConfig(
        enabled_species=tuple(str(x) for x in species),
        thresholds=thresholds,
        input_shapes=input_shapes,
    )


def _mapping(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key, {})
    if not isinstance(value, dict):
        raise ConfigurationError(f"ml.{key} must be an object keyed by species name.")
    return value


def _build_dalitz(payload: Any) -> DalitzConfig:
    if not isinstance(payload, dict):
        raise ConfigurationError("Configuration section 'dalitz' must be an object.")
    unknown = sorted(set(payload) - {"track_cuts", "pair_cuts"})
    if unknown:
        raise ConfigurationError(f"Unknown keys in section 'dalitz': {', '.join(unknown)}")
    track_cuts = tuple(
        _build_section(DalitzTrackCut, cut, f"dalitz.track_cuts[{i}]")
        for i, cut in enumerate(payload.get("track_cuts", []))
    )
    pair_cuts = tuple(
        _build_section(DalitzPairCut, cut, f"dalitz.pair_cuts[{i}]")
        for i, cut in enumerate(payload.get("pair_cuts", []))
    )
    return DalitzConfig(track_cuts=track_cuts, pair_cuts=pair_cuts)
