"""Single-object selections: beauty bachelors, protons, kaons and photons.

All functions are pure in the track; the only side effect is the optional
QA fill recording.
"""

from __future__ import annotations

import math

from .bits import BeautyTrackSelection
from .calibration import PostCalibration, tpc_nsigma
from .config import BeautyTrackCuts, GammaCuts, find_bin
from .models import TrackState, V0Photon
from .pid import PIDSpecies
from .qa import FillRecorder

QA_PROTON_TPC_PID = "proton_tpc_pid"
QA_PROTON_TOF_PID = "proton_tof_pid"
QA_GAMMA_SELECTED = "gamma_selected"
QA_GAMMA_ETA_BEFORE = "gamma_eta_before"
QA_GAMMA_ETA_AFTER = "gamma_eta_after"
QA_GAMMA_ARMENTEROS_BEFORE = "gamma_armenteros_before"
QA_GAMMA_ARMENTEROS_AFTER = "gamma_armenteros_after"


def is_selected_track_for_beauty(track: TrackState, cuts: BeautyTrackCuts) -> BeautyTrackSelection:
    """Classify a track as beauty bachelor: rejected, soft pion or regular.

    Tracks below `cuts.pt_min_bachelor` that pass every other cut are soft
    pions; soft-pion requirements are a subset of the regular ones.
    """
    pt = track.pt
    pt_bin = find_bin(cuts.pt_bins, pt)
    if pt_bin == -1:
        return BeautyTrackSelection.REJECTED
    if pt < cuts.pt_min_soft_pion:
        return BeautyTrackSelection.REJECTED
    if abs(track.eta) > cuts.max_abs_eta:
        return BeautyTrackSelection.REJECTED
    if abs(track.dca_z) > cuts.max_abs_dca_z:
        return BeautyTrackSelection.REJECTED

    min_dca_xy, max_dca_xy = cuts.dca_window(pt_bin)
    if abs(track.dca_xy) < min_dca_xy or abs(track.dca_xy) > max_dca_xy:
        return BeautyTrackSelection.REJECTED

    if pt < cuts.pt_min_bachelor:
        return BeautyTrackSelection.SOFT_PION
    return BeautyTrackSelection.REGULAR


def is_selected_proton_for_femto(
    track: TrackState,
    min_proton_pt: float,
    max_nsigma_proton: float,
    proton_only_tof: bool = False,
    compute_tpc_post_calib: bool = False,
    post_calibration: PostCalibration | None = None,
    qa_level: int = 0,
    qa: FillRecorder | None = None,
    max_abs_eta: float = 0.8,
) -> bool:
    """Proton selection for the femtoscopy triggers.

    The combined Nsigma is either |TOF| alone or the quadrature sum of TPC
    and TOF, depending on `proton_only_tof`.
    """
    if track.pt < min_proton_pt:
        return False
    if abs(track.eta) > max_abs_eta:
        return False
    if not track.is_global_track:
        return False

    nsigma_tpc = tpc_nsigma(track, PIDSpecies.PROTON, compute_tpc_post_calib, post_calibration)
    nsigma_tof = track.tof_nsigma_pr
    if proton_only_tof:
        nsigma = abs(nsigma_tof)
    else:
        nsigma = math.sqrt(nsigma_tpc * nsigma_tpc + nsigma_tof * nsigma_tof)
    if nsigma > max_nsigma_proton:
        return False

    if qa is not None and qa_level > 1:
        qa.fill(QA_PROTON_TPC_PID, track.p, nsigma_tpc)
        qa.fill(QA_PROTON_TOF_PID, track.p, nsigma_tof)
    return True


def is_selected_proton_for_charm_baryons(
    track: TrackState,
    nsigma_tpc_max: float,
    nsigma_tof_max: float,
    compute_tpc_post_calib: bool = False,
    post_calibration: PostCalibration | None = None,
) -> bool:
    """Proton PID for Lc/Xic daughters; a missing TOF measurement does not veto."""
    nsigma_tpc = tpc_nsigma(track, PIDSpecies.PROTON, compute_tpc_post_calib, post_calibration)
    if abs(nsigma_tpc) > nsigma_tpc_max:
        return False
    if track.has_tof and abs(track.tof_nsigma_pr) > nsigma_tof_max:
        return False
    return True


def is_selected_kaon_for_charm_3prong(
    track: TrackState,
    nsigma_tpc_max: float,
    nsigma_tof_max: float,
    compute_tpc_post_calib: bool = False,
    post_calibration: PostCalibration | None = None,
) -> bool:
    """Kaon PID for 3-prong charm daughters; a missing TOF measurement does not veto."""
    nsigma_tpc = tpc_nsigma(track, PIDSpecies.KAON, compute_tpc_post_calib, post_calibration)
    if abs(nsigma_tpc) > nsigma_tpc_max:
        return False
    if track.has_tof and abs(track.tof_nsigma_ka) > nsigma_tof_max:
        return False
    return True


def is_selected_gamma(
    photon: V0Photon,
    cuts: GammaCuts,
    qa_level: int = 0,
    qa: FillRecorder | None = None,
) -> bool:
    """Photon-conversion selection.

    With QA above level 1 the step reached is recorded in `gamma_selected`:
    0 = in, 1 = eta, 2 = radius, 3 = Armenteros, 4 = psi pair, 5 = pointing
    angle, 6 = selected.
    """
    record = qa is not None and qa_level > 1
    if record:
        qa.fill(QA_GAMMA_SELECTED, 0)
        qa.fill(QA_GAMMA_ETA_BEFORE, photon.eta)
        qa.fill(QA_GAMMA_ARMENTEROS_BEFORE, photon.alpha, photon.qt_arm)

    failed_step = 0
    if abs(photon.eta) > cuts.max_abs_eta:
        failed_step = 1
    elif photon.v0_radius < cuts.min_v0_radius or photon.v0_radius > cuts.max_v0_radius:
        failed_step = 2
    elif (photon.alpha / cuts.alpha_scale) ** 2 + (photon.qt_arm / cuts.qt_scale) ** 2 >= 1.0:
        failed_step = 3
    elif abs(photon.psi_pair) > cuts.max_abs_psi_pair:
        failed_step = 4
    elif photon.cos_pa < cuts.min_cos_pa:
        failed_step = 5

    if failed_step:
        if record:
            qa.fill(QA_GAMMA_SELECTED, failed_step)
        return False

    if record:
        qa.fill(QA_GAMMA_SELECTED, 6)
        qa.fill(QA_GAMMA_ETA_AFTER, photon.eta)
        qa.fill(QA_GAMMA_ARMENTEROS_AFTER, photon.alpha, photon.qt_arm)
    return True
