"""Core data models used by the heavy-flavour trigger selection.

This module defines:
- immutable reconstructed objects (`TrackState`, `V0Photon`, `CaloCluster`)
- 4-vector and particle-mass assignment objects (`LorentzVector`, `ParticleHypothesis`)
- event containers (`EventInput`)
- selection outputs (`CharmCandidate`, `BeautyCandidate`, `EventDecision`)
- combinatorics helpers for 2-prong and 3-prong candidates.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from itertools import combinations
from typing import TYPE_CHECKING, Iterable, Sequence

if TYPE_CHECKING:
    from .bits import CharmParticle, HfTrigger, SelectionBits

Vector3 = tuple[float, float, float]


@dataclass(frozen=True)
class TrackState:
    """Single reconstructed barrel track with kinematics, DCA and PID observables.

    `tpc_nsigma_*` / `tof_nsigma_*` are the detector response deviations for
    each species hypothesis. TOF values are meaningless when `has_tof` is false.
    """

    index: int
    px: float
    py: float
    pz: float
    charge: int = 0
    dca_xy: float = 0.0
    dca_z: float = 0.0
    tpc_nsigma_el: float = 0.0
    tpc_nsigma_pi: float = 0.0
    tpc_nsigma_ka: float = 0.0
    tpc_nsigma_pr: float = 0.0
    tof_nsigma_el: float = 0.0
    tof_nsigma_pi: float = 0.0
    tof_nsigma_ka: float = 0.0
    tof_nsigma_pr: float = 0.0
    has_tof: bool = False
    tpc_ncls_found: int = 0
    tpc_inner_param: float = 0.0
    is_global_track: bool = True

    @property
    def momentum(self) -> Vector3:
        return (self.px, self.py, self.pz)

    @property
    def p(self) -> float:
        """Momentum magnitude."""
        return math.sqrt(self.px * self.px + self.py * self.py + self.pz * self.pz)

    @property
    def pt(self) -> float:
        """Transverse momentum."""
        return math.hypot(self.px, self.py)

    @property
    def eta(self) -> float:
        """Pseudorapidity computed from the momentum direction."""
        return pseudorapidity(self.px, self.py, self.pz)


@dataclass(frozen=True)
class V0Photon:
    """Photon-conversion (V0) candidate used by the gamma selection."""

    index: int
    px: float
    py: float
    pz: float
    v0_radius: float
    alpha: float
    qt_arm: float
    psi_pair: float
    cos_pa: float
    daughter_indices: tuple[int, ...] = ()

    @property
    def momentum(self) -> Vector3:
        return (self.px, self.py, self.pz)

    @property
    def pt(self) -> float:
        return math.hypot(self.px, self.py)

    @property
    def eta(self) -> float:
        return pseudorapidity(self.px, self.py, self.pz)


@dataclass(frozen=True)
class CaloCluster:
    """Calorimeter cluster considered by the cluster skimmer."""

    index: int
    energy: float
    eta: float
    phi: float
    time: float
    m02: float
    collision_id: int = -1


@dataclass(frozen=True)
class EventInput:
    """One event payload with its tracks and optional photon/cluster lists."""

    event_id: str
    tracks: tuple[TrackState, ...]
    photons: tuple[V0Photon, ...] = ()
    clusters: tuple[CaloCluster, ...] = ()
    run_number: int | None = None


@dataclass(frozen=True)
class ParticleHypothesis:
    """Named particle hypothesis used to derive mass-dependent observables."""

    name: str
    mass: float
    pdg_id: int | None = None


@dataclass(frozen=True)
class LorentzVector:
    """Simple 4-vector with convenience properties and arithmetic."""

    px: float
    py: float
    pz: float
    e: float

    @classmethod
    def from_momentum_mass(cls, momentum: Sequence[float], mass: float) -> "LorentzVector":
        """Build an on-shell 4-vector from 3-momentum and mass (E^2 = p^2 + m^2)."""
        px, py, pz = (float(x) for x in momentum)
        return cls(px, py, pz, math.sqrt(px * px + py * py + pz * pz + mass * mass))

    def __add__(self, other: "LorentzVector") -> "LorentzVector":
        """Component-wise 4-vector addition."""
        return LorentzVector(
            self.px + other.px,
            self.py + other.py,
            self.pz + other.pz,
            self.e + other.e,
        )

    def __sub__(self, other: "LorentzVector") -> "LorentzVector":
        """Component-wise 4-vector difference."""
        return LorentzVector(
            self.px - other.px,
            self.py - other.py,
            self.pz - other.pz,
            self.e - other.e,
        )

    @property
    def p2(self) -> float:
        """Squared 3-momentum magnitude."""
        return self.px * self.px + self.py * self.py + self.pz * self.pz

    @property
    def p(self) -> float:
        return math.sqrt(self.p2)

    @property
    def pt(self) -> float:
        return math.hypot(self.px, self.py)

    @property
    def mass2(self) -> float:
        """Invariant mass squared."""
        return self.e * self.e - self.p2

    @property
    def mass(self) -> float:
        """Invariant mass with signed handling for small negative mass2 values."""
        m2 = self.mass2
        return m2**0.5 if m2 >= 0.0 else -((-m2) ** 0.5)

    def boost_vector_to_cm(self) -> Vector3:
        """Velocity `-p/E` that brings this 4-vector to rest."""
        return (-self.px / self.e, -self.py / self.e, -self.pz / self.e)


@dataclass(frozen=True)
class CharmCandidate:
    """One charm-hadron candidate that survived preselection and mass tagging.

    `selection` maps each charm species to its surviving hypothesis bits and
    `origin` to the ML origin bits (absent when no scorer was configured).
    """

    track_indices: tuple[int, ...]
    p4_momentum: Vector3
    pt: float
    selection: dict[CharmParticle, SelectionBits]
    invariant_masses: dict[str, float]
    charge: int = 0
    origin: dict[CharmParticle, SelectionBits] = field(default_factory=dict)
    scores: dict[CharmParticle, tuple[float, ...]] = field(default_factory=dict)

    @property
    def n_prongs(self) -> int:
        return len(self.track_indices)

    @property
    def index_set(self) -> frozenset[int]:
        return frozenset(self.track_indices)


@dataclass(frozen=True)
class BeautyCandidate:
    """Charm candidate combined with a bachelor track into a beauty-hadron candidate."""

    charm_track_indices: tuple[int, ...]
    bachelor_index: int
    particle: str
    mass: float
    pt: float


@dataclass(frozen=True)
class EventDecision:
    """Per-event trigger outcome plus diagnostic values for downstream output."""

    event_id: str
    triggers: frozenset[HfTrigger]
    charm_candidates: tuple[CharmCandidate, ...] = ()
    beauty_candidates: tuple[BeautyCandidate, ...] = ()
    relative_momenta: tuple[tuple[int, tuple[int, ...], float], ...] = ()
    n_independent_2prong: int = 0
    n_independent_3prong: int = 0
    n_independent_mixed: int = 0
    dalitz_bits: dict[int, int] = field(default_factory=dict)
    selected_cluster_indices: tuple[int, ...] = ()

    @property
    def accepted(self) -> bool:
        return bool(self.triggers)


def pseudorapidity(px: float, py: float, pz: float) -> float:
    """Pseudorapidity from momentum components (saturates along the beam axis)."""
    p = math.sqrt(px * px + py * py + pz * pz)
    if p == abs(pz):
        return 1e9 if pz >= 0 else -1e9
    return 0.5 * math.log((p + pz) / (p - pz))


def iter_opposite_sign_pairs(
    tracks: Sequence[TrackState],
) -> Iterable[tuple[TrackState, TrackState]]:
    """Yield `(positive, negative)` pairs from all opposite-sign track pairs."""
    for first, second in combinations(tracks, 2):
        if first.charge > 0 and second.charge < 0:
            yield first, second
        elif first.charge < 0 and second.charge > 0:
            yield second, first


def iter_three_prong_triplets(
    tracks: Sequence[TrackState],
) -> Iterable[tuple[TrackState, TrackState, TrackState]]:
    """Yield `(same_first, same_second, opposite)` for triplets with |sum q| = 1."""
    for combo in combinations(tracks, 3):
        if any(t.charge == 0 for t in combo):
            continue
        if abs(sum(t.charge for t in combo)) != 1:
            continue
        total_sign = 1 if sum(t.charge for t in combo) > 0 else -1
        same = [t for t in combo if (t.charge > 0) == (total_sign > 0)]
        opposite = [t for t in combo if (t.charge > 0) != (total_sign > 0)]
        yield same[0], same[1], opposite[0]
