"""Event-level heavy-flavour software-trigger decision."""

from __future__ import annotations

import logging
import math
from typing import Iterable, Mapping, Sequence

from .bits import (
    BEAUTY_PARTICLE_NAMES,
    CHARM_PARTICLE_NAMES,
    BeautyParticle,
    BeautyTrackSelection,
    CharmBaryonHypothesis,
    CharmParticle,
    D0Hypothesis,
    DplusHypothesis,
    DsHypothesis,
    HfTrigger,
    OriginType,
    SelectionBits,
)
from .calibration import CalibrationProvider, PostCalibration
from .candidates import EventArena, compute_number_of_candidates
from .config import FilterConfig
from .dalitz import DalitzTagger
from .errors import CalibrationError, ConfigurationError
from .mass import (
    CHARM_BARYON_MASSES,
    D0_MASSES,
    DPLUS_MASSES,
    DS_MASSES,
    hypothesis_masses,
    is_selected_d0_in_mass_range,
    is_selected_dplus_in_mass_range,
    is_selected_ds_in_mass_range,
    is_selected_lc_in_mass_range,
    is_selected_xic_in_mass_range,
)
from .ml import Scorer, build_features, is_bdt_selected
from .models import (
    BeautyCandidate,
    CharmCandidate,
    EventDecision,
    EventInput,
    LorentzVector,
    TrackState,
    V0Photon,
    iter_opposite_sign_pairs,
    iter_three_prong_triplets,
)
from .physics import compute_relative_momentum, invariant_mass, sum_momenta
from .pid import (
    MASS_B0,
    MASS_BPLUS,
    MASS_BS,
    MASS_D0,
    MASS_DPLUS,
    MASS_DS,
    MASS_DS_STAR,
    MASS_DSTAR,
    MASS_DSTAR0,
    MASS_LB,
    MASS_LC,
    MASS_PION,
    MASS_XIB,
    MASS_XIC,
)
from .preselection import (
    is_charm_baryon_preselected,
    is_dplus_preselected,
    is_ds_preselected,
    is_dzero_preselected,
)
from .qa import FillRecorder
from .selection import is_selected_gamma, is_selected_proton_for_femto, is_selected_track_for_beauty
from .skim import ClusterSkimmer

logger = logging.getLogger(__name__)

CHARM_MASSES: dict[CharmParticle, float] = {
    CharmParticle.D0: MASS_D0,
    CharmParticle.DPLUS: MASS_DPLUS,
    CharmParticle.DS: MASS_DS,
    CharmParticle.LC: MASS_LC,
    CharmParticle.XIC: MASS_XIC,
}

# Beauty hadron reached by adding a pion bachelor to a 3-prong charm hadron.
BEAUTY_FROM_THREE_PRONG: dict[CharmParticle, tuple[BeautyParticle, float]] = {
    CharmParticle.DPLUS: (BeautyParticle.B0, MASS_B0),
    CharmParticle.DS: (BeautyParticle.BS, MASS_BS),
    CharmParticle.LC: (BeautyParticle.LB, MASS_LB),
    CharmParticle.XIC: (BeautyParticle.XIB, MASS_XIB),
}

# Diagnostic column name of every charm hypothesis bit.
MASS_LABELS: dict[CharmParticle, dict[int, str]] = {
    CharmParticle.D0: {D0Hypothesis.D0: "D0", D0Hypothesis.D0BAR: "D0bar"},
    CharmParticle.DPLUS: {DplusHypothesis.KPIPI: "Dplus"},
    CharmParticle.DS: {DsHypothesis.KKPI: "DsToKKPi", DsHypothesis.PIKK: "DsToPiKK"},
    CharmParticle.LC: {CharmBaryonHypothesis.PKPI: "LcToPKPi", CharmBaryonHypothesis.PIKP: "LcToPiKP"},
    CharmParticle.XIC: {CharmBaryonHypothesis.PKPI: "XicToPKPi", CharmBaryonHypothesis.PIKP: "XicToPiKP"},
}

_MASS_TUPLES: dict[CharmParticle, dict[int, tuple[float, ...]]] = {
    CharmParticle.D0: D0_MASSES,
    CharmParticle.DPLUS: {DplusHypothesis.KPIPI: DPLUS_MASSES},
    CharmParticle.DS: DS_MASSES,
    CharmParticle.LC: CHARM_BARYON_MASSES,
    CharmParticle.XIC: CHARM_BARYON_MASSES,
}


class HfFilter:
    """Apply the heavy-flavour trigger selections event by event.

    Workflow per event:
    1. Classify every track as beauty bachelor and femto proton.
    2. Build D0 candidates from opposite-sign pairs and D+, Ds, Lc, Xic
       candidates from triplets with |sum q| = 1 (PID preselection, mass
       window, optional ML origin classification).
    3. Decide the `HfTrigger` classes from the surviving candidates.

    The instance owns per-event scratch storage and the QA recorder, so it
    must not be shared between threads.
    """

    def __init__(
        self,
        config: FilterConfig | None = None,
        calibration: PostCalibration | CalibrationProvider | None = None,
        scorers: Mapping[str, Scorer] | None = None,
        qa: FillRecorder | None = None,
    ) -> None:
        self.config = config if config is not None else FilterConfig()
        self.calibration = calibration
        self.scorers = dict(scorers or {})
        self.qa = qa
        if self.config.compute_tpc_post_calib and calibration is None:
            raise ConfigurationError("TPC post-calibration is enabled but no calibration source was given.")
        missing = [name for name in self.config.ml.enabled_species if name not in self.scorers]
        if missing:
            raise ConfigurationError(f"ML scoring enabled for {', '.join(missing)} but no scorer was given.")

        self.arena = EventArena()
        self.dalitz = (
            DalitzTagger.from_config(self.config.dalitz, qa=self._qa_if(0)) if self.config.dalitz.enabled else None
        )
        self.cluster_skimmer = ClusterSkimmer(self.config.clusters, self._qa_if(0))

    def process_events(self, events: Iterable[EventInput]) -> list[EventDecision]:
        decisions = [self.process_event(event) for event in events]
        logger.info(
            "Processed %d events, %d accepted",
            len(decisions),
            sum(1 for decision in decisions if decision.accepted),
        )
        return decisions

    def process_event(self, event: EventInput) -> EventDecision:
        cfg = self.config
        tracks = event.tracks
        post_calibration = self._post_calibration_for(event)
        self._classify_tracks(tracks, post_calibration)

        two_prong = self._build_two_prong_candidates(tracks, post_calibration)
        three_prong = self._build_three_prong_candidates(tracks, post_calibration)
        photons = [
            photon for photon in event.photons if is_selected_gamma(photon, cfg.gamma, cfg.qa_level, self.qa)
        ]

        triggers: set[HfTrigger] = set()
        charm_2p = [cand for cand in two_prong if _is_tagged(cand, CharmParticle.D0, OriginType.PROMPT)]
        charm_3p = [
            cand for cand in three_prong if any(_is_tagged(cand, p, OriginType.PROMPT) for p in cand.selection)
        ]

        if any(cand.pt >= cfg.high_pt.min_pt_2prong for cand in charm_2p):
            triggers.add(HfTrigger.HIGH_PT_2P)
        if any(cand.pt >= cfg.high_pt.min_pt_3prong for cand in charm_3p):
            triggers.add(HfTrigger.HIGH_PT_3P)

        beauty: list[BeautyCandidate] = []
        for cand in two_prong:
            if _is_tagged(cand, CharmParticle.D0, OriginType.NON_PROMPT):
                beauty.extend(self._beauty_from_dzero(cand, tracks))
        for cand in three_prong:
            beauty.extend(self._beauty_from_three_prong(cand, tracks))
        bplus_name = BEAUTY_PARTICLE_NAMES[BeautyParticle.BPLUS]
        if any(b.particle == bplus_name for b in beauty):
            triggers.add(HfTrigger.BEAUTY_3P)
        if any(b.particle != bplus_name for b in beauty):
            triggers.add(HfTrigger.BEAUTY_4P)

        relative_momenta = []
        for pos, proton in enumerate(tracks):
            if not self.arena.femto_proton[pos]:
                continue
            for cand in charm_2p:
                if proton.index in cand.index_set:
                    continue
                kstar = compute_relative_momentum(proton.momentum, cand.p4_momentum, MASS_D0)
                relative_momenta.append((proton.index, cand.track_indices, kstar))
                if kstar < cfg.femto.max_relative_momentum:
                    triggers.add(HfTrigger.FEMTO_2P)
            for cand in charm_3p:
                if proton.index in cand.index_set:
                    continue
                for particle in cand.selection:
                    if not _is_tagged(cand, particle, OriginType.PROMPT):
                        continue
                    kstar = compute_relative_momentum(proton.momentum, cand.p4_momentum, CHARM_MASSES[particle])
                    relative_momenta.append((proton.index, cand.track_indices, kstar))
                    if kstar < cfg.femto.max_relative_momentum:
                        triggers.add(HfTrigger.FEMTO_3P)

        indices_2p = [cand.track_indices for cand in charm_2p]
        indices_3p = [cand.track_indices for cand in charm_3p]
        n_2p = compute_number_of_candidates(indices_2p)
        n_3p = compute_number_of_candidates(indices_3p)
        n_mix = compute_number_of_candidates(indices_2p + indices_3p) if indices_2p and indices_3p else 0
        if n_2p > 1:
            triggers.add(HfTrigger.DOUBLE_CHARM_2P)
        if n_3p > 1:
            triggers.add(HfTrigger.DOUBLE_CHARM_3P)
        if n_mix > 1:
            triggers.add(HfTrigger.DOUBLE_CHARM_MIX)

        if any(self._has_gamma_partner(cand, CharmParticle.D0, photons) for cand in charm_2p):
            triggers.add(HfTrigger.GAMMA_CHARM_2P)
        if any(self._has_gamma_partner(cand, CharmParticle.DS, photons) for cand in charm_3p):
            triggers.add(HfTrigger.GAMMA_CHARM_3P)

        dalitz_bits = self.dalitz.tag_event(tracks) if self.dalitz is not None else {}
        clusters = self.cluster_skimmer(event.clusters)

        return EventDecision(
            event_id=event.event_id,
            triggers=frozenset(triggers),
            charm_candidates=tuple(two_prong + three_prong),
            beauty_candidates=tuple(beauty),
            relative_momenta=tuple(relative_momenta),
            n_independent_2prong=n_2p,
            n_independent_3prong=n_3p,
            n_independent_mixed=n_mix,
            dalitz_bits=dalitz_bits,
            selected_cluster_indices=tuple(cluster.index for cluster in clusters),
        )

    def _classify_tracks(self, tracks: Sequence[TrackState], post_calibration: PostCalibration | None) -> None:
        cfg = self.config
        femto = cfg.femto
        self.arena.reset(len(tracks))
        for pos, track in enumerate(tracks):
            self.arena.beauty_tag[pos] = is_selected_track_for_beauty(track, cfg.beauty)
            self.arena.femto_proton[pos] = is_selected_proton_for_femto(
                track,
                femto.min_proton_pt,
                femto.max_nsigma_proton,
                femto.proton_only_tof,
                cfg.compute_tpc_post_calib,
                post_calibration,
                cfg.qa_level,
                self.qa,
                femto.max_abs_eta,
            )

    def _build_two_prong_candidates(
        self,
        tracks: Sequence[TrackState],
        post_calibration: PostCalibration | None,
    ) -> list[CharmCandidate]:
        cfg = self.config
        pid = cfg.charm_pid
        candidates: list[CharmCandidate] = []
        for track_pos, track_neg in iter_opposite_sign_pairs(tracks):
            preselected = is_dzero_preselected(
                track_pos,
                track_neg,
                pid.nsigma_tpc_pion_kaon_dzero,
                pid.nsigma_tof_pion_kaon_dzero,
                cfg.compute_tpc_post_calib,
                post_calibration,
            )
            if not preselected:
                continue
            momenta = (track_pos.momentum, track_neg.momentum)
            momentum = sum_momenta(momenta)
            pt = math.hypot(momentum[0], momentum[1])
            selected = is_selected_d0_in_mass_range(
                *momenta, pt, preselected, cfg.mass_windows.delta_mass_charm, self._qa_if(0)
            )
            if not selected:
                continue
            candidates.append(
                self._make_candidate(
                    (track_pos, track_neg), momentum, 0, {CharmParticle.D0: selected}, {CharmParticle.D0: momenta}
                )
            )
        return candidates

    def _build_three_prong_candidates(
        self,
        tracks: Sequence[TrackState],
        post_calibration: PostCalibration | None,
    ) -> list[CharmCandidate]:
        cfg = self.config
        pid = cfg.charm_pid
        calib = (cfg.compute_tpc_post_calib, post_calibration)
        delta_mass = cfg.mass_windows.delta_mass_charm
        qa = self._qa_if(0)
        candidates: list[CharmCandidate] = []
        for same_first, same_second, opposite in iter_three_prong_triplets(tracks):
            p_first, p_second, p_opposite = same_first.momentum, same_second.momentum, opposite.momentum
            momentum = sum_momenta((p_first, p_second, p_opposite))
            pt = math.hypot(momentum[0], momentum[1])
            selection: dict[CharmParticle, SelectionBits] = {}

            presel = is_dplus_preselected(opposite, pid.nsigma_tpc_kaon_3prong, pid.nsigma_tof_kaon_3prong, *calib)
            if presel:
                selected = is_selected_dplus_in_mass_range(
                    p_first, p_second, p_opposite, pt, delta_mass, qa, preselected=presel
                )
                if selected:
                    selection[CharmParticle.DPLUS] = selected

            presel = is_ds_preselected(
                same_first,
                same_second,
                opposite,
                pid.nsigma_tpc_kaon_3prong,
                pid.nsigma_tof_kaon_3prong,
                *calib,
                delta_mass_phi=cfg.mass_windows.delta_mass_phi,
            )
            if presel:
                selected = is_selected_ds_in_mass_range(p_first, p_second, p_opposite, pt, presel, delta_mass, qa)
                if selected:
                    selection[CharmParticle.DS] = selected

            presel = is_charm_baryon_preselected(
                same_first,
                same_second,
                opposite,
                pid.nsigma_tpc_proton_lc,
                pid.nsigma_tof_proton_lc,
                pid.nsigma_tpc_kaon_3prong,
                pid.nsigma_tof_kaon_3prong,
                *calib,
            )
            if presel:
                selected = is_selected_lc_in_mass_range(p_first, p_second, p_opposite, pt, presel, delta_mass, qa)
                if selected:
                    selection[CharmParticle.LC] = selected
                selected = is_selected_xic_in_mass_range(p_first, p_second, p_opposite, pt, presel, delta_mass, qa)
                if selected:
                    selection[CharmParticle.XIC] = selected

            if not selection:
                continue
            # D+ masses follow the charge layout, the other species put the opposite track in the middle.
            ordered = (p_first, p_opposite, p_second)
            momenta_by_particle = {
                particle: (p_first, p_second, p_opposite) if particle == CharmParticle.DPLUS else ordered
                for particle in selection
            }
            charge = 1 if same_first.charge > 0 else -1
            candidates.append(
                self._make_candidate(
                    (same_first, opposite, same_second), momentum, charge, selection, momenta_by_particle
                )
            )
        return candidates

    def _make_candidate(
        self,
        daughters: Sequence[TrackState],
        momentum: tuple[float, float, float],
        charge: int,
        selection: dict[CharmParticle, SelectionBits],
        momenta_by_particle: Mapping[CharmParticle, Sequence[Sequence[float]]],
    ) -> CharmCandidate:
        masses: dict[str, float] = {}
        for particle, bits in selection.items():
            tuples = {bit: m for bit, m in _MASS_TUPLES[particle].items() if bits.has(bit)}
            for bit, mass in hypothesis_masses(momenta_by_particle[particle], tuples).items():
                masses[MASS_LABELS[particle][bit]] = mass

        origin: dict[CharmParticle, SelectionBits] = {}
        scores: dict[CharmParticle, tuple[float, ...]] = {}
        features = None
        for particle in selection:
            name = CHARM_PARTICLE_NAMES[particle]
            if name not in self.config.ml.enabled_species:
                continue
            if features is None:
                features = build_features(daughters)
            scores[particle] = self.scorers[name].predict_scores(features)
            origin[particle] = is_bdt_selected(scores[particle], self.config.ml.thresholds_for(name))

        return CharmCandidate(
            track_indices=tuple(track.index for track in daughters),
            p4_momentum=momentum,
            pt=math.hypot(momentum[0], momentum[1]),
            selection=selection,
            invariant_masses=masses,
            charge=charge,
            origin=origin,
            scores=scores,
        )

    def _beauty_from_dzero(self, cand: CharmCandidate, tracks: Sequence[TrackState]) -> list[BeautyCandidate]:
        """B+ -> D0bar pi+ and B0 -> D*- pi+ (D*- -> D0bar pi-) candidates."""
        windows = self.config.mass_windows
        bits = cand.selection[CharmParticle.D0]
        out: list[BeautyCandidate] = []
        for pos, track in enumerate(tracks):
            tag = self.arena.beauty_tag[pos]
            if tag == BeautyTrackSelection.REJECTED or track.index in cand.index_set:
                continue
            if tag == BeautyTrackSelection.REGULAR and (
                (bits.has(D0Hypothesis.D0) and track.charge < 0) or (bits.has(D0Hypothesis.D0BAR) and track.charge > 0)
            ):
                mass = invariant_mass((cand.p4_momentum, track.momentum), (MASS_D0, MASS_PION))
                if abs(mass - MASS_BPLUS) <= windows.delta_mass_beauty:
                    out.append(_beauty(cand.track_indices, track, BeautyParticle.BPLUS, mass, cand.p4_momentum))

            # soft pion: D*+ -> D0 pi+, D*- -> D0bar pi-
            hypothesis = D0Hypothesis.D0 if track.charge > 0 else D0Hypothesis.D0BAR
            if track.charge == 0 or not bits.has(hypothesis):
                continue
            mass_d0 = cand.invariant_masses[MASS_LABELS[CharmParticle.D0][hypothesis]]
            mass_dstar = invariant_mass((cand.p4_momentum, track.momentum), (mass_d0, MASS_PION))
            if abs(mass_dstar - mass_d0 - (MASS_DSTAR - MASS_D0)) >= windows.delta_mass_dstar:
                continue
            p_dstar = sum_momenta((cand.p4_momentum, track.momentum))
            dstar_indices = (*cand.track_indices, track.index)
            for pos_bach, bachelor in enumerate(tracks):
                if (
                    self.arena.beauty_tag[pos_bach] != BeautyTrackSelection.REGULAR
                    or bachelor.index in dstar_indices
                    or bachelor.charge * track.charge >= 0
                ):
                    continue
                mass = invariant_mass((p_dstar, bachelor.momentum), (MASS_DSTAR, MASS_PION))
                if abs(mass - MASS_B0) <= windows.delta_mass_beauty:
                    out.append(_beauty(dstar_indices, bachelor, BeautyParticle.B0_TO_DSTAR, mass, p_dstar))
        return out

    def _beauty_from_three_prong(
        self, cand: CharmCandidate, tracks: Sequence[TrackState]
    ) -> list[BeautyCandidate]:
        """B0, Bs, Lb and Xib candidates from a 3-prong charm hadron plus an opposite-charge pion."""
        delta_mass = self.config.mass_windows.delta_mass_beauty
        out: list[BeautyCandidate] = []
        for particle in cand.selection:
            if not _is_tagged(cand, particle, OriginType.NON_PROMPT):
                continue
            beauty_particle, beauty_mass = BEAUTY_FROM_THREE_PRONG[particle]
            for pos, track in enumerate(tracks):
                if (
                    self.arena.beauty_tag[pos] != BeautyTrackSelection.REGULAR
                    or track.index in cand.index_set
                    or track.charge * cand.charge >= 0
                ):
                    continue
                mass = invariant_mass((cand.p4_momentum, track.momentum), (CHARM_MASSES[particle], MASS_PION))
                if abs(mass - beauty_mass) <= delta_mass:
                    out.append(_beauty(cand.track_indices, track, beauty_particle, mass, cand.p4_momentum))
        return out

    def _has_gamma_partner(
        self, cand: CharmCandidate, particle: CharmParticle, photons: Sequence[V0Photon]
    ) -> bool:
        """Whether a photon brings the candidate to the D*0 (D0) or Ds* (Ds) mass difference."""
        if not photons or not _is_tagged(cand, particle, OriginType.PROMPT):
            return False
        mass_charm = _candidate_mass(cand, particle)
        if particle == CharmParticle.D0:
            target = MASS_DSTAR0 - MASS_D0
        else:
            target = MASS_DS_STAR - MASS_DS
        p4_charm = LorentzVector.from_momentum_mass(cand.p4_momentum, mass_charm)
        for photon in photons:
            if cand.index_set.intersection(photon.daughter_indices):
                continue
            p4 = p4_charm + LorentzVector.from_momentum_mass(photon.momentum, 0.0)
            if abs(p4.mass - mass_charm - target) < self.config.mass_windows.delta_mass_gamma_charm:
                return True
        return False

    def _post_calibration_for(self, event: EventInput) -> PostCalibration | None:
        if not self.config.compute_tpc_post_calib:
            return None
        if isinstance(self.calibration, PostCalibration):
            return self.calibration
        if event.run_number is None:
            raise CalibrationError(f"Event {event.event_id} has no run number for the post-calibration lookup.")
        return self.calibration.get(event.run_number)

    def _qa_if(self, min_level: int) -> FillRecorder | None:
        """QA recorder when the configured QA level is above `min_level`."""
        return self.qa if self.config.qa_level > min_level else None


def _is_tagged(cand: CharmCandidate, particle: CharmParticle, origin: OriginType) -> bool:
    """Species selected and, when scored, classified with `origin`."""
    if particle not in cand.selection:
        return False
    if particle not in cand.origin:
        return True
    return cand.origin[particle].has(origin)


def _candidate_mass(cand: CharmCandidate, particle: CharmParticle) -> float:
    """Mass of the selected hypothesis closest to the nominal mass."""
    labels = MASS_LABELS[particle]
    masses = [cand.invariant_masses[labels[bit]] for bit in cand.selection[particle].bits()]
    return min(masses, key=lambda m: abs(m - CHARM_MASSES[particle]))


def _beauty(
    charm_indices: tuple[int, ...],
    bachelor: TrackState,
    particle: BeautyParticle,
    mass: float,
    charm_momentum: Sequence[float],
) -> BeautyCandidate:
    px, py, _ = sum_momenta((charm_momentum, bachelor.momentum))
    return BeautyCandidate(
        charm_track_indices=tuple(charm_indices),
        bachelor_index=bachelor.index,
        particle=BEAUTY_PARTICLE_NAMES[particle],
        mass=mass,
        pt=math.hypot(px, py),
    )
