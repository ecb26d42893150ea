"""Relativistic kinematics helpers for candidate building and femtoscopy."""

from __future__ import annotations

import math
from typing import Iterable, Sequence

from .models import LorentzVector, ParticleHypothesis, Vector3
from .pid import MASS_PROTON

MassLike = float | ParticleHypothesis


def sum_lorentz(vectors: Iterable[LorentzVector]) -> LorentzVector:
    """Sum an iterable of Lorentz vectors."""
    total = LorentzVector(0.0, 0.0, 0.0, 0.0)
    for vec in vectors:
        total = total + vec
    return total


def sum_momenta(momenta: Iterable[Sequence[float]]) -> Vector3:
    """Component-wise sum of 3-momenta."""
    px = py = pz = 0.0
    for mom in momenta:
        px += mom[0]
        py += mom[1]
        pz += mom[2]
    return (px, py, pz)


def invariant_mass(momenta: Sequence[Sequence[float]], masses: Sequence[MassLike]) -> float:
    """Invariant mass of N particles with the given 3-momenta and mass assignment.

    Uses `M^2 = (sum E)^2 - |sum p|^2` with `E_i^2 = p_i^2 + m_i^2`.
    """
    if len(momenta) != len(masses):
        raise ValueError("Mass list length must match the number of momenta.")
    p4 = sum_lorentz(
        LorentzVector.from_momentum_mass(mom, _mass_value(mass))
        for mom, mass in zip(momenta, masses, strict=True)
    )
    return p4.mass


def boost(vec: LorentzVector, beta: Vector3) -> LorentzVector:
    """Apply a pure Lorentz boost with velocity `beta` (in units of c)."""
    bx, by, bz = beta
    b2 = bx * bx + by * by + bz * bz
    if b2 >= 1.0:
        raise ValueError(f"Boost velocity squared {b2} must be below 1.")
    gamma = 1.0 / math.sqrt(1.0 - b2)
    bp = bx * vec.px + by * vec.py + bz * vec.pz
    gamma2 = (gamma - 1.0) / b2 if b2 > 0.0 else 0.0
    factor = gamma2 * bp + gamma * vec.e
    return LorentzVector(
        vec.px + factor * bx,
        vec.py + factor * by,
        vec.pz + factor * bz,
        gamma * (vec.e + bp),
    )


def compute_relative_momentum(
    track_momentum: Sequence[float],
    candidate_momentum: Sequence[float],
    candidate_mass: float,
) -> float:
    """Half relative momentum k* of a (proton, charm-candidate) pair.

    Both 4-vectors are boosted into the pair rest frame; k* is half the
    magnitude of their 3-momentum difference there.
    """
    part1 = LorentzVector.from_momentum_mass(track_momentum, MASS_PROTON)
    part2 = LorentzVector.from_momentum_mass(candidate_momentum, candidate_mass)
    beta = (part1 + part2).boost_vector_to_cm()
    rel = boost(part1, beta) - boost(part2, beta)
    return 0.5 * rel.p


def _mass_value(mass: MassLike) -> float:
    if isinstance(mass, ParticleHypothesis):
        return mass.mass
    return float(mass)
