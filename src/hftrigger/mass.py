"""Invariant-mass window tagging of preselected charm candidates.

Only hypotheses whose bit arrives set are tested, and the result is masked
with the incoming bits, so the output is always a subset of the input.
When a QA recorder is given, every tested hypothesis is filled as
(candidate pT, mass) whether or not it passes.

3-prong mass tuples are ordered (first same-charge, opposite, second
same-charge).
"""

from __future__ import annotations

from typing import Sequence

from .bits import EMPTY, CharmBaryonHypothesis, D0Hypothesis, DplusHypothesis, DsHypothesis, SelectionBits
from .physics import invariant_mass
from .pid import MASS_D0, MASS_DPLUS, MASS_DS, MASS_KAON, MASS_LC, MASS_PION, MASS_PROTON, MASS_XIC
from .qa import FillRecorder

Momentum = Sequence[float]

QA_MASS_VS_PT = "mass_vs_pt_{}"

D0_MASSES = {
    D0Hypothesis.D0: (MASS_PION, MASS_KAON),
    D0Hypothesis.D0BAR: (MASS_KAON, MASS_PION),
}
DPLUS_MASSES = (MASS_PION, MASS_PION, MASS_KAON)
DS_MASSES = {
    DsHypothesis.KKPI: (MASS_KAON, MASS_KAON, MASS_PION),
    DsHypothesis.PIKK: (MASS_PION, MASS_KAON, MASS_KAON),
}
CHARM_BARYON_MASSES = {
    CharmBaryonHypothesis.PKPI: (MASS_PROTON, MASS_KAON, MASS_PION),
    CharmBaryonHypothesis.PIKP: (MASS_PION, MASS_KAON, MASS_PROTON),
}


def is_selected_d0_in_mass_range(
    p_track_pos: Momentum,
    p_track_neg: Momentum,
    pt_d: float,
    preselected: SelectionBits,
    delta_mass: float,
    qa: FillRecorder | None = None,
) -> SelectionBits:
    """Narrow D0/D0bar bits with a window around the D0 mass."""
    return _tag_hypotheses(
        (p_track_pos, p_track_neg), D0_MASSES, MASS_D0, pt_d, preselected, delta_mass, qa, "D0"
    )


def is_selected_dplus_in_mass_range(
    p_track_same_first: Momentum,
    p_track_same_second: Momentum,
    p_track_opposite: Momentum,
    pt_d: float,
    delta_mass: float,
    qa: FillRecorder | None = None,
    preselected: SelectionBits = SelectionBits.of(DplusHypothesis.KPIPI),
) -> SelectionBits:
    """Single-hypothesis D+ window (pi pi K with the kaon on the opposite track)."""
    momenta = (p_track_same_first, p_track_same_second, p_track_opposite)
    return _tag_hypotheses(
        momenta,
        {DplusHypothesis.KPIPI: DPLUS_MASSES},
        MASS_DPLUS,
        pt_d,
        preselected,
        delta_mass,
        qa,
        "Dplus",
        inclusive=True,
    )


def is_selected_ds_in_mass_range(
    p_track_same_first: Momentum,
    p_track_same_second: Momentum,
    p_track_opposite: Momentum,
    pt_d: float,
    preselected: SelectionBits,
    delta_mass: float,
    qa: FillRecorder | None = None,
) -> SelectionBits:
    """Narrow Ds KKpi/piKK bits with a window around the Ds mass."""
    momenta = (p_track_same_first, p_track_opposite, p_track_same_second)
    return _tag_hypotheses(momenta, DS_MASSES, MASS_DS, pt_d, preselected, delta_mass, qa, "Ds")


def is_selected_lc_in_mass_range(
    p_track_same_first: Momentum,
    p_track_same_second: Momentum,
    p_track_opposite: Momentum,
    pt_lc: float,
    preselected: SelectionBits,
    delta_mass: float,
    qa: FillRecorder | None = None,
) -> SelectionBits:
    """Narrow Lc pKpi/piKp bits with a window around the Lc mass."""
    momenta = (p_track_same_first, p_track_opposite, p_track_same_second)
    return _tag_hypotheses(momenta, CHARM_BARYON_MASSES, MASS_LC, pt_lc, preselected, delta_mass, qa, "Lc")


def is_selected_xic_in_mass_range(
    p_track_same_first: Momentum,
    p_track_same_second: Momentum,
    p_track_opposite: Momentum,
    pt_xic: float,
    preselected: SelectionBits,
    delta_mass: float,
    qa: FillRecorder | None = None,
) -> SelectionBits:
    """Narrow Xic pKpi/piKp bits with a window around the Xic mass."""
    momenta = (p_track_same_first, p_track_opposite, p_track_same_second)
    return _tag_hypotheses(momenta, CHARM_BARYON_MASSES, MASS_XIC, pt_xic, preselected, delta_mass, qa, "Xic")


def hypothesis_masses(
    momenta: Sequence[Momentum],
    mass_tuples: dict[int, tuple[float, ...]],
) -> dict[int, float]:
    """Invariant mass of `momenta` under every hypothesis in `mass_tuples`."""
    return {bit: invariant_mass(momenta, masses) for bit, masses in mass_tuples.items()}


def _tag_hypotheses(
    momenta: Sequence[Momentum],
    mass_tuples: dict[int, tuple[float, ...]],
    reference_mass: float,
    pt: float,
    preselected: SelectionBits,
    delta_mass: float,
    qa: FillRecorder | None,
    particle: str,
    inclusive: bool = False,
) -> SelectionBits:
    result = EMPTY
    for bit, masses in mass_tuples.items():
        if not preselected.has(bit):
            continue
        mass = invariant_mass(momenta, masses)
        if qa is not None:
            qa.fill(QA_MASS_VS_PT.format(particle), pt, mass)
        deviation = abs(mass - reference_mass)
        if deviation < delta_mass or (inclusive and deviation == delta_mass):
            result = result.with_bit(bit)
    return result & preselected
