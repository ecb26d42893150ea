"""Particle-hypothesis helpers and PDG reference masses.

Masses are in GeV/c^2. Named hypotheses can be used directly wherever a mass
tuple is expected (invariant-mass helpers accept both).
"""

from __future__ import annotations

from enum import IntEnum

from .models import ParticleHypothesis


class PIDSpecies(IntEnum):
    """Species with TPC/TOF Nsigma observables on a track."""

    ELECTRON = 0
    KAON = 1
    PION = 2
    PROTON = 3


_PION = ParticleHypothesis(name="pi", mass=0.13957039, pdg_id=211)
_KAON = ParticleHypothesis(name="K", mass=0.493677, pdg_id=321)
_PROTON = ParticleHypothesis(name="p", mass=0.93827208816, pdg_id=2212)
_MUON = ParticleHypothesis(name="mu", mass=0.1056583755, pdg_id=13)
_ELECTRON = ParticleHypothesis(name="e", mass=0.00051099895, pdg_id=11)
_PHOTON = ParticleHypothesis(name="gamma", mass=0.0, pdg_id=22)
_PHI = ParticleHypothesis(name="phi", mass=1.019461, pdg_id=333)

# Charm hadrons
_D0 = ParticleHypothesis(name="D0", mass=1.86484, pdg_id=421)
_DPLUS = ParticleHypothesis(name="Dplus", mass=1.86966, pdg_id=411)
_DS = ParticleHypothesis(name="Ds", mass=1.96835, pdg_id=431)
_LC = ParticleHypothesis(name="Lc", mass=2.28646, pdg_id=4122)
_XIC = ParticleHypothesis(name="Xic", mass=2.46771, pdg_id=4232)
_DSTAR = ParticleHypothesis(name="Dstar", mass=2.01026, pdg_id=413)
_DSTAR0 = ParticleHypothesis(name="Dstar0", mass=2.00685, pdg_id=423)
_DS_STAR = ParticleHypothesis(name="DsStar", mass=2.1122, pdg_id=433)

# Beauty hadrons
_BPLUS = ParticleHypothesis(name="Bplus", mass=5.27934, pdg_id=521)
_B0 = ParticleHypothesis(name="B0", mass=5.27965, pdg_id=511)
_BS = ParticleHypothesis(name="Bs", mass=5.36688, pdg_id=531)
_LB = ParticleHypothesis(name="Lb", mass=5.61960, pdg_id=5122)
_XIB = ParticleHypothesis(name="Xib", mass=5.7919, pdg_id=5232)

MASS_PION = _PION.mass
MASS_KAON = _KAON.mass
MASS_PROTON = _PROTON.mass
MASS_ELECTRON = _ELECTRON.mass
MASS_PHI = _PHI.mass
MASS_D0 = _D0.mass
MASS_DPLUS = _DPLUS.mass
MASS_DS = _DS.mass
MASS_LC = _LC.mass
MASS_XIC = _XIC.mass
MASS_DSTAR = _DSTAR.mass
MASS_DSTAR0 = _DSTAR0.mass
MASS_DS_STAR = _DS_STAR.mass
MASS_BPLUS = _BPLUS.mass
MASS_B0 = _B0.mass
MASS_BS = _BS.mass
MASS_LB = _LB.mass
MASS_XIB = _XIB.mass

_NAME_TO_HYPOTHESIS: dict[str, ParticleHypothesis] = {
    "pi": _PION,
    "pion": _PION,
    "k": _KAON,
    "kaon": _KAON,
    "p": _PROTON,
    "proton": _PROTON,
    "mu": _MUON,
    "muon": _MUON,
    "e": _ELECTRON,
    "electron": _ELECTRON,
    "gamma": _PHOTON,
    "photon": _PHOTON,
    "phi": _PHI,
    "d0": _D0,
    "dplus": _DPLUS,
    "ds": _DS,
    "lc": _LC,
    "lambdac": _LC,
    "xic": _XIC,
    "dstar": _DSTAR,
    "dstar0": _DSTAR0,
    "dsstar": _DS_STAR,
    "bplus": _BPLUS,
    "b0": _B0,
    "bs": _BS,
    "lb": _LB,
    "lambdab": _LB,
    "xib": _XIB,
}


def particle_hypothesis_from_name(name: str) -> ParticleHypothesis:
    """Resolve a short particle name (e.g. `pi`, `kaon`) into a hypothesis."""
    key = name.strip().lower()
    try:
        return _NAME_TO_HYPOTHESIS[key]
    except KeyError as exc:
        supported = ", ".join(sorted(_NAME_TO_HYPOTHESIS))
        raise ValueError(
            f"Unknown particle hypothesis name '{name}'. Supported names: {supported}"
        ) from exc
