"""PID-based preselection of 2-prong and 3-prong charm candidates.

Each function returns the `SelectionBits` of the decay hypotheses compatible
with the daughter PID. Apart from the Ds phi check, no candidate mass is
computed here.

3-prong arguments follow the charge layout: two same-charge tracks and the
opposite-charge track.
"""

from __future__ import annotations

from .bits import EMPTY, CharmBaryonHypothesis, D0Hypothesis, DplusHypothesis, DsHypothesis, SelectionBits
from .calibration import PostCalibration, tpc_nsigma
from .models import TrackState
from .physics import invariant_mass
from .pid import MASS_KAON, MASS_PHI, PIDSpecies
from .selection import is_selected_kaon_for_charm_3prong, is_selected_proton_for_charm_baryons


def is_dplus_preselected(
    track_opposite: TrackState,
    nsigma_tpc_kaon: float,
    nsigma_tof_kaon: float,
    compute_tpc_post_calib: bool = False,
    post_calibration: PostCalibration | None = None,
) -> SelectionBits:
    """D+ -> K- pi+ pi+: the opposite-charge track must be a kaon."""
    if not is_selected_kaon_for_charm_3prong(
        track_opposite, nsigma_tpc_kaon, nsigma_tof_kaon, compute_tpc_post_calib, post_calibration
    ):
        return EMPTY
    return SelectionBits.of(DplusHypothesis.KPIPI)


def is_ds_preselected(
    track_same_first: TrackState,
    track_same_second: TrackState,
    track_opposite: TrackState,
    nsigma_tpc_kaon: float,
    nsigma_tof_kaon: float,
    compute_tpc_post_calib: bool = False,
    post_calibration: PostCalibration | None = None,
    delta_mass_phi: float = 0.02,
) -> SelectionBits:
    """Ds -> phi pi: kaon PID on the opposite track plus a KK mass near the phi.

    KKpi is set when (first same-charge, opposite) is phi-like, piKK when
    (second same-charge, opposite) is.
    """
    if not is_selected_kaon_for_charm_3prong(
        track_opposite, nsigma_tpc_kaon, nsigma_tof_kaon, compute_tpc_post_calib, post_calibration
    ):
        return EMPTY

    result = EMPTY
    mass_kk_first = invariant_mass((track_same_first.momentum, track_opposite.momentum), (MASS_KAON, MASS_KAON))
    mass_kk_second = invariant_mass((track_same_second.momentum, track_opposite.momentum), (MASS_KAON, MASS_KAON))
    if abs(mass_kk_first - MASS_PHI) < delta_mass_phi:
        result = result.with_bit(DsHypothesis.KKPI)
    if abs(mass_kk_second - MASS_PHI) < delta_mass_phi:
        result = result.with_bit(DsHypothesis.PIKK)
    return result


def is_charm_baryon_preselected(
    track_same_first: TrackState,
    track_same_second: TrackState,
    track_opposite: TrackState,
    nsigma_tpc_proton: float,
    nsigma_tof_proton: float,
    nsigma_tpc_kaon: float,
    nsigma_tof_kaon: float,
    compute_tpc_post_calib: bool = False,
    post_calibration: PostCalibration | None = None,
) -> SelectionBits:
    """Lc/Xic -> p K pi: kaon on the opposite track, proton on either same-charge track."""
    if not is_selected_kaon_for_charm_3prong(
        track_opposite, nsigma_tpc_kaon, nsigma_tof_kaon, compute_tpc_post_calib, post_calibration
    ):
        return EMPTY

    result = EMPTY
    if is_selected_proton_for_charm_baryons(
        track_same_first, nsigma_tpc_proton, nsigma_tof_proton, compute_tpc_post_calib, post_calibration
    ):
        result = result.with_bit(CharmBaryonHypothesis.PKPI)
    if is_selected_proton_for_charm_baryons(
        track_same_second, nsigma_tpc_proton, nsigma_tof_proton, compute_tpc_post_calib, post_calibration
    ):
        result = result.with_bit(CharmBaryonHypothesis.PIKP)
    return result


def is_dzero_preselected(
    track_pos: TrackState,
    track_neg: TrackState,
    nsigma_tpc_max: float,
    nsigma_tof_max: float,
    compute_tpc_post_calib: bool = False,
    post_calibration: PostCalibration | None = None,
) -> SelectionBits:
    """D0 (pi+ K-) and D0bar (K+ pi-) compatibility of an opposite-sign pair."""
    result = EMPTY
    pion_pos = _passes_pid(track_pos, PIDSpecies.PION, nsigma_tpc_max, nsigma_tof_max, compute_tpc_post_calib, post_calibration)
    kaon_neg = _passes_pid(track_neg, PIDSpecies.KAON, nsigma_tpc_max, nsigma_tof_max, compute_tpc_post_calib, post_calibration)
    if pion_pos and kaon_neg:
        result = result.with_bit(D0Hypothesis.D0)
    pion_neg = _passes_pid(track_neg, PIDSpecies.PION, nsigma_tpc_max, nsigma_tof_max, compute_tpc_post_calib, post_calibration)
    kaon_pos = _passes_pid(track_pos, PIDSpecies.KAON, nsigma_tpc_max, nsigma_tof_max, compute_tpc_post_calib, post_calibration)
    if pion_neg and kaon_pos:
        result = result.with_bit(D0Hypothesis.D0BAR)
    return result


def _passes_pid(
    track: TrackState,
    species: PIDSpecies,
    nsigma_tpc_max: float,
    nsigma_tof_max: float,
    compute_tpc_post_calib: bool,
    post_calibration: PostCalibration | None,
) -> bool:
    """Inclusive TPC window plus TOF window when TOF is available."""
    nsigma_tpc = tpc_nsigma(track, species, compute_tpc_post_calib, post_calibration)
    if not abs(nsigma_tpc) <= nsigma_tpc_max:
        return False
    if not track.has_tof:
        return True
    nsigma_tof = track.tof_nsigma_pi if species == PIDSpecies.PION else track.tof_nsigma_ka
    return abs(nsigma_tof) <= nsigma_tof_max
