"""Unit tests for the event-level trigger decisions."""

from __future__ import annotations

import math
import tempfile
import unittest

from hftrigger import (
    CalibrationError,
    CalibrationProvider,
    CaloCluster,
    CallableBackend,
    CharmParticle,
    ConfigurationError,
    EventInput,
    FillRecorder,
    FilterConfig,
    HfFilter,
    HfTrigger,
    LorentzVector,
    Scorer,
    TrackState,
    V0Photon,
)
from hftrigger.bits import D0Hypothesis, OriginType
from hftrigger.config import DalitzConfig, DalitzPairCut, DalitzTrackCut, MassWindows, MlConfig
from hftrigger.physics import boost
from hftrigger.pid import (
    MASS_B0,
    MASS_BPLUS,
    MASS_D0,
    MASS_DPLUS,
    MASS_DS,
    MASS_DS_STAR,
    MASS_DSTAR,
    MASS_DSTAR0,
    MASS_KAON,
    MASS_PHI,
    MASS_PION,
)


def _two_body_momentum(mother: float, m1: float, m2: float) -> float:
    """Daughter momentum of a two-body decay at rest."""
    return math.sqrt((mother**2 - (m1 + m2) ** 2) * (mother**2 - (m1 - m2) ** 2)) / (2.0 * mother)


def _boost_along_y(momentum, mass: float, p_mother: float, m_mother: float):
    """Move a rest-frame daughter into the frame where its mother has momentum p_mother along +y."""
    if p_mother == 0.0:
        return momentum
    beta = p_mother / math.sqrt(p_mother**2 + m_mother**2)
    vec = boost(LorentzVector.from_momentum_mass(momentum, mass), (0.0, beta, 0.0))
    return (vec.px, vec.py, vec.pz)


def _pion(index: int, momentum, charge: int) -> TrackState:
    px, py, pz = momentum
    return TrackState(
        index=index, px=px, py=py, pz=pz, charge=charge,
        tpc_nsigma_pi=0.0, tpc_nsigma_ka=5.0, tpc_nsigma_pr=10.0,
    )


def _kaon(index: int, momentum, charge: int) -> TrackState:
    px, py, pz = momentum
    return TrackState(
        index=index, px=px, py=py, pz=pz, charge=charge,
        tpc_nsigma_pi=5.0, tpc_nsigma_ka=0.0, tpc_nsigma_pr=10.0,
    )


def _bachelor(index: int, momentum, charge: int) -> TrackState:
    """Track that fails every charm-daughter PID but is a regular beauty bachelor at pT > 1.5."""
    px, py, pz = momentum
    return TrackState(
        index=index, px=px, py=py, pz=pz, charge=charge,
        tpc_nsigma_pi=5.0, tpc_nsigma_ka=5.0, tpc_nsigma_pr=10.0,
    )


def _dzero(first_index: int, p_mother: float = 0.0, along_y: bool = False) -> list[TrackState]:
    """pi+ K- daughters of a D0 moving with p_mother along +y."""
    p_star = _two_body_momentum(MASS_D0, MASS_KAON, MASS_PION)
    direction = (0.0, p_star, 0.0) if along_y else (p_star, 0.0, 0.0)
    opposite = tuple(-x for x in direction)
    return [
        _pion(first_index, _boost_along_y(direction, MASS_PION, p_mother, MASS_D0), 1),
        _kaon(first_index + 1, _boost_along_y(opposite, MASS_KAON, p_mother, MASS_D0), -1),
    ]


def _dplus(first_index: int, p_mother: float = 0.0) -> list[TrackState]:
    """K- pi+ pi+ daughters of a D+ moving with p_mother along +y (kaon at rest in the D+ frame)."""
    p_pion = math.sqrt(((MASS_DPLUS - MASS_KAON) / 2.0) ** 2 - MASS_PION**2)
    return [
        _pion(first_index, _boost_along_y((p_pion, 0.0, 0.0), MASS_PION, p_mother, MASS_DPLUS), 1),
        _pion(first_index + 1, _boost_along_y((-p_pion, 0.0, 0.0), MASS_PION, p_mother, MASS_DPLUS), 1),
        _kaon(first_index + 2, _boost_along_y((0.0, 0.0, 0.0), MASS_KAON, p_mother, MASS_DPLUS), -1),
    ]


def _ds_to_phi_pion(first_index: int, p_mother: float = 0.0) -> list[TrackState]:
    """K+ pi+ K- daughters of Ds -> phi pi+ moving with p_mother along +y."""
    q = _two_body_momentum(MASS_DS, MASS_PHI, MASS_PION)
    k = _two_body_momentum(MASS_PHI, MASS_KAON, MASS_KAON)
    beta_phi = (q / math.sqrt(q**2 + MASS_PHI**2), 0.0, 0.0)
    kaons = []
    for sign in (1.0, -1.0):
        vec = boost(LorentzVector.from_momentum_mass((0.0, sign * k, 0.0), MASS_KAON), beta_phi)
        kaons.append(_boost_along_y((vec.px, vec.py, vec.pz), MASS_KAON, p_mother, MASS_DS))
    return [
        _kaon(first_index, kaons[0], 1),
        _pion(first_index + 1, _boost_along_y((-q, 0.0, 0.0), MASS_PION, p_mother, MASS_DS), 1),
        _kaon(first_index + 2, kaons[1], -1),
    ]


def _photon(momentum, daughter_indices=(10, 11)) -> V0Photon:
    px, py, pz = momentum
    return V0Photon(
        index=0, px=px, py=py, pz=pz, v0_radius=10.0, alpha=0.0, qt_arm=0.0,
        psi_pair=0.0, cos_pa=0.99, daughter_indices=daughter_indices,
    )


def _dstar_and_bachelor(bachelor_charge: int, soft_dca_xy: float = 0.01) -> list[TrackState]:
    """B0 -> D*+ pi- at rest, D*+ -> D0 pi+ with the soft pion along the D* flight."""
    q = _two_body_momentum(MASS_B0, MASS_DSTAR, MASS_PION)
    s = _two_body_momentum(MASS_DSTAR, MASS_D0, MASS_PION)
    p_dzero = _boost_along_y((0.0, -s, 0.0), MASS_D0, q, MASS_DSTAR)[1]
    px, py, pz = _boost_along_y((0.0, s, 0.0), MASS_PION, q, MASS_DSTAR)
    soft_pion = TrackState(
        index=2, px=px, py=py, pz=pz, charge=1, dca_xy=soft_dca_xy,
        tpc_nsigma_pi=0.0, tpc_nsigma_ka=5.0, tpc_nsigma_pr=10.0,
    )
    return _dzero(0, p_mother=p_dzero) + [soft_pion, _bachelor(3, (0.0, -q, 0.0), bachelor_charge)]


def _event(tracks, **kwargs) -> EventInput:
    return EventInput(event_id="evt", tracks=tuple(tracks), **kwargs)


class TestTriggerDecisions(unittest.TestCase):
    """Validate each trigger class on a hand-built event."""

    def test_empty_event_is_rejected(self) -> None:
        """No tracks, no triggers."""
        decision = HfFilter().process_event(_event([]))
        self.assertFalse(decision.accepted)
        self.assertEqual(decision.charm_candidates, ())

    def test_high_pt_dzero(self) -> None:
        """A D0 above the pT threshold fires only the 2-prong high-pT trigger."""
        decision = HfFilter().process_event(_event(_dzero(0, p_mother=10.0)))
        self.assertEqual(decision.triggers, frozenset({HfTrigger.HIGH_PT_2P}))
        (cand,) = decision.charm_candidates
        self.assertEqual(cand.track_indices, (0, 1))
        self.assertAlmostEqual(cand.pt, 10.0, places=6)
        self.assertEqual(int(cand.selection[CharmParticle.D0]), 1 << D0Hypothesis.D0)
        self.assertAlmostEqual(cand.invariant_masses["D0"], MASS_D0, places=6)

    def test_low_pt_dzero_is_not_triggered(self) -> None:
        """A D0 at rest is a candidate but fires nothing on its own."""
        decision = HfFilter().process_event(_event(_dzero(0)))
        self.assertEqual(len(decision.charm_candidates), 1)
        self.assertFalse(decision.accepted)

    def test_high_pt_dplus(self) -> None:
        """A D+ above the pT threshold fires the 3-prong high-pT trigger."""
        decision = HfFilter().process_event(_event(_dplus(0, p_mother=10.0)))
        self.assertEqual(decision.triggers, frozenset({HfTrigger.HIGH_PT_3P}))
        (cand,) = decision.charm_candidates
        self.assertEqual(set(cand.selection), {CharmParticle.DPLUS})
        self.assertEqual(cand.charge, 1)
        self.assertAlmostEqual(cand.invariant_masses["Dplus"], MASS_DPLUS, places=6)

    def test_double_charm_from_disjoint_dzeros(self) -> None:
        """Two D0 candidates without shared tracks fire the double-charm trigger."""
        decision = HfFilter().process_event(_event(_dzero(0) + _dzero(2, along_y=True)))
        self.assertEqual(decision.triggers, frozenset({HfTrigger.DOUBLE_CHARM_2P}))
        self.assertEqual(decision.n_independent_2prong, 2)
        self.assertEqual(decision.n_independent_mixed, 0)

    def test_femto_with_proton(self) -> None:
        """A proton close in phase space to a D0 fires the 2-prong femto trigger."""
        proton = TrackState(
            index=2, px=0.6, py=0.0, pz=0.1, charge=1,
            tpc_nsigma_pi=5.0, tpc_nsigma_ka=5.0, tpc_nsigma_pr=0.0,
        )
        decision = HfFilter().process_event(_event(_dzero(0) + [proton]))
        self.assertEqual(decision.triggers, frozenset({HfTrigger.FEMTO_2P}))
        ((proton_index, charm_indices, kstar),) = decision.relative_momenta
        self.assertEqual((proton_index, charm_indices), (2, (0, 1)))
        self.assertLess(kstar, 0.6)

    def test_bplus_from_dzero_and_bachelor(self) -> None:
        """D0 plus a negative pion at the B mass fires the 3-prong beauty trigger."""
        q = _two_body_momentum(MASS_BPLUS, MASS_D0, MASS_PION)
        bachelor = _bachelor(2, (0.0, -q, 0.0), -1)
        decision = HfFilter().process_event(_event(_dzero(0, p_mother=q) + [bachelor]))
        self.assertEqual(decision.triggers, frozenset({HfTrigger.BEAUTY_3P}))
        (beauty,) = decision.beauty_candidates
        self.assertEqual(beauty.particle, "Bplus")
        self.assertEqual(beauty.bachelor_index, 2)
        self.assertAlmostEqual(beauty.mass, MASS_BPLUS, places=6)

    def test_bplus_requires_matching_charge(self) -> None:
        """A positive bachelor does not pair with a D0 (pi+ K-) candidate."""
        q = _two_body_momentum(MASS_BPLUS, MASS_D0, MASS_PION)
        bachelor = _bachelor(2, (0.0, -q, 0.0), 1)
        decision = HfFilter().process_event(_event(_dzero(0, p_mother=q) + [bachelor]))
        self.assertNotIn(HfTrigger.BEAUTY_3P, decision.triggers)

    def test_b0_from_dplus_and_bachelor(self) -> None:
        """D+ plus a negative pion at the B0 mass fires the 4-prong beauty trigger."""
        q = _two_body_momentum(MASS_B0, MASS_DPLUS, MASS_PION)
        bachelor = _bachelor(3, (0.0, -q, 0.0), -1)
        decision = HfFilter().process_event(_event(_dplus(0, p_mother=q) + [bachelor]))
        self.assertEqual(decision.triggers, frozenset({HfTrigger.BEAUTY_4P}))
        self.assertEqual([b.particle for b in decision.beauty_candidates], ["B0"])

    def test_gamma_charm_from_dstar0(self) -> None:
        """A photon completing a D*0 -> D0 gamma decay fires the 2-prong gamma trigger."""
        k = (MASS_DSTAR0**2 - MASS_D0**2) / (2.0 * MASS_DSTAR0)
        photon = V0Photon(
            index=0, px=0.0, py=-k, pz=0.0, v0_radius=10.0, alpha=0.0, qt_arm=0.0,
            psi_pair=0.0, cos_pa=0.99, daughter_indices=(10, 11),
        )
        decision = HfFilter().process_event(_event(_dzero(0, p_mother=k), photons=(photon,)))
        self.assertEqual(decision.triggers, frozenset({HfTrigger.GAMMA_CHARM_2P}))

    def test_gamma_sharing_a_track_is_ignored(self) -> None:
        """A photon built from a candidate daughter cannot pair with it."""
        k = (MASS_DSTAR0**2 - MASS_D0**2) / (2.0 * MASS_DSTAR0)
        photon = V0Photon(
            index=0, px=0.0, py=-k, pz=0.0, v0_radius=10.0, alpha=0.0, qt_arm=0.0,
            psi_pair=0.0, cos_pa=0.99, daughter_indices=(1, 11),
        )
        decision = HfFilter().process_event(_event(_dzero(0, p_mother=k), photons=(photon,)))
        self.assertFalse(decision.accepted)

    def test_gamma_charm_from_ds_star(self) -> None:
        """A photon completing a Ds* -> Ds gamma decay fires the 3-prong gamma trigger."""
        k = (MASS_DS_STAR**2 - MASS_DS**2) / (2.0 * MASS_DS_STAR)
        tracks = _ds_to_phi_pion(0, p_mother=k)
        decision = HfFilter().process_event(_event(tracks, photons=(_photon((0.0, -k, 0.0)),)))
        self.assertEqual(decision.triggers, frozenset({HfTrigger.GAMMA_CHARM_3P}))
        (cand,) = decision.charm_candidates
        self.assertEqual(set(cand.selection), {CharmParticle.DS})
        self.assertAlmostEqual(cand.invariant_masses["DsToKKPi"], MASS_DS, places=6)

    def test_gamma_off_the_ds_star_mass_is_ignored(self) -> None:
        """A photon far from the Ds*-Ds mass difference fires nothing."""
        k = (MASS_DS_STAR**2 - MASS_DS**2) / (2.0 * MASS_DS_STAR)
        tracks = _ds_to_phi_pion(0, p_mother=k)
        decision = HfFilter().process_event(_event(tracks, photons=(_photon((0.0, -1.0, 0.0)),)))
        self.assertFalse(decision.accepted)

    def test_femto_with_proton_and_dplus(self) -> None:
        """A proton close in phase space to a D+ fires the 3-prong femto trigger."""
        proton = TrackState(
            index=3, px=0.0, py=-0.6, pz=0.1, charge=1,
            tpc_nsigma_pi=5.0, tpc_nsigma_ka=5.0, tpc_nsigma_pr=0.0,
        )
        decision = HfFilter().process_event(_event(_dplus(0) + [proton]))
        self.assertEqual(decision.triggers, frozenset({HfTrigger.FEMTO_3P}))
        ((proton_index, charm_indices, kstar),) = decision.relative_momenta
        self.assertEqual(proton_index, 3)
        self.assertEqual(set(charm_indices), {0, 1, 2})
        self.assertLess(kstar, 0.8)

    def test_double_charm_from_disjoint_dplus(self) -> None:
        """Two D+ candidates without shared tracks fire the 3-prong double-charm trigger."""
        decision = HfFilter().process_event(_event(_dplus(0) + _dplus(3, p_mother=5.0)))
        self.assertEqual(decision.triggers, frozenset({HfTrigger.DOUBLE_CHARM_3P}))
        self.assertEqual(len(decision.charm_candidates), 2)
        self.assertEqual(decision.n_independent_3prong, 2)
        self.assertEqual(decision.n_independent_mixed, 0)

    def test_double_charm_from_dzero_and_dplus(self) -> None:
        """One D0 and one disjoint D+ fire only the mixed double-charm trigger."""
        decision = HfFilter().process_event(_event(_dzero(0) + _dplus(2, p_mother=5.0)))
        self.assertEqual(decision.triggers, frozenset({HfTrigger.DOUBLE_CHARM_MIX}))
        self.assertEqual(decision.n_independent_2prong, 1)
        self.assertEqual(decision.n_independent_3prong, 1)
        self.assertEqual(decision.n_independent_mixed, 2)

    def test_b0_from_dstar_and_bachelor(self) -> None:
        """D0 plus soft pion at the D* mass and an opposite-charge pion fire the 4-prong beauty trigger."""
        config = FilterConfig(mass_windows=MassWindows(delta_mass_beauty=0.1))
        decision = HfFilter(config).process_event(_event(_dstar_and_bachelor(-1)))
        self.assertEqual(decision.triggers, frozenset({HfTrigger.BEAUTY_4P}))
        (beauty,) = decision.beauty_candidates
        self.assertEqual(beauty.particle, "B0toDStar")
        self.assertEqual(beauty.charm_track_indices, (0, 1, 2))
        self.assertEqual(beauty.bachelor_index, 3)
        self.assertAlmostEqual(beauty.mass, MASS_B0, places=6)

    def test_b0_from_dstar_needs_opposite_charge_bachelor(self) -> None:
        """A bachelor with the soft-pion charge does not make a B0 candidate."""
        config = FilterConfig(mass_windows=MassWindows(delta_mass_beauty=0.1))
        decision = HfFilter(config).process_event(_event(_dstar_and_bachelor(1)))
        self.assertNotIn(HfTrigger.BEAUTY_4P, decision.triggers)
        self.assertEqual(decision.beauty_candidates, ())

    def test_b0_from_dstar_needs_displaced_soft_pion(self) -> None:
        """A soft pion rejected by the DCA cut cannot build the D*."""
        config = FilterConfig(mass_windows=MassWindows(delta_mass_beauty=0.1))
        decision = HfFilter(config).process_event(_event(_dstar_and_bachelor(-1, soft_dca_xy=0.0)))
        self.assertEqual(decision.beauty_candidates, ())


class TestMlScoring(unittest.TestCase):
    """Validate how origin classification gates the triggers."""

    @staticmethod
    def _filter(scores) -> HfFilter:
        config = FilterConfig(ml=MlConfig(enabled_species=("D0",)))
        scorer = Scorer.load(CallableBackend(lambda features: list(scores)), "D0.pt")
        return HfFilter(config, scorers={"D0": scorer})

    def test_prompt_score_keeps_trigger(self) -> None:
        """A prompt-classified D0 still fires the high-pT trigger."""
        decision = self._filter((0.05, 0.9, 0.05)).process_event(_event(_dzero(0, p_mother=10.0)))
        self.assertEqual(decision.triggers, frozenset({HfTrigger.HIGH_PT_2P}))
        (cand,) = decision.charm_candidates
        self.assertTrue(cand.origin[CharmParticle.D0].has(OriginType.PROMPT))
        self.assertEqual(cand.scores[CharmParticle.D0], (0.05, 0.9, 0.05))

    def test_background_score_removes_trigger(self) -> None:
        """A background-like D0 is kept as a candidate but fires nothing."""
        decision = self._filter((0.9, 0.05, 0.05)).process_event(_event(_dzero(0, p_mother=10.0)))
        self.assertFalse(decision.accepted)
        self.assertEqual(len(decision.charm_candidates), 1)

    def test_failed_inference_fails_closed(self) -> None:
        """Malformed model output selects nothing and is logged."""
        hf_filter = self._filter((0.05, 0.9))
        with self.assertLogs("hftrigger.ml", level="ERROR"):
            decision = hf_filter.process_event(_event(_dzero(0, p_mother=10.0)))
        self.assertFalse(decision.accepted)
        (cand,) = decision.charm_candidates
        self.assertEqual(cand.scores[CharmParticle.D0], ())

    def test_crashing_model_does_not_stop_the_run(self) -> None:
        """A runtime error inside the model fails the candidate, not the batch."""

        def crashing(features):
            raise RuntimeError("Invalid input shape")

        config = FilterConfig(ml=MlConfig(enabled_species=("D0",)))
        hf_filter = HfFilter(config, scorers={"D0": Scorer.load(CallableBackend(crashing), "D0.pt")})
        with self.assertLogs("hftrigger.ml", level="ERROR"):
            decisions = hf_filter.process_events([_event(_dzero(0, p_mother=10.0)), _event(_dzero(0))])
        self.assertEqual(len(decisions), 2)
        self.assertFalse(any(decision.accepted for decision in decisions))

    def test_enabled_species_without_scorer(self) -> None:
        """Scoring a species requires a scorer for it."""
        with self.assertRaises(ConfigurationError):
            HfFilter(FilterConfig(ml=MlConfig(enabled_species=("Ds",))))


class TestFilterSetup(unittest.TestCase):
    """Validate calibration wiring, QA levels and optional event products."""

    def test_post_calibration_needs_a_source(self) -> None:
        """Enabling post-calibration without maps is a configuration error."""
        with self.assertRaises(ConfigurationError):
            HfFilter(FilterConfig(compute_tpc_post_calib=True))

    def test_provider_needs_run_number(self) -> None:
        """Per-run calibration lookup fails for events without a run number."""
        with tempfile.TemporaryDirectory() as tmpdir:
            hf_filter = HfFilter(FilterConfig(compute_tpc_post_calib=True), calibration=CalibrationProvider(tmpdir))
            with self.assertRaises(CalibrationError):
                hf_filter.process_event(_event([]))
            with self.assertRaises(CalibrationError):
                hf_filter.process_event(_event([], run_number=1))

    def test_mass_qa_from_level_one(self) -> None:
        """Mass QA is recorded at level 1 and skipped at level 0."""
        qa = FillRecorder()
        HfFilter(FilterConfig(qa_level=0), qa=qa).process_event(_event(_dzero(0, p_mother=10.0)))
        self.assertEqual(qa.count("mass_vs_pt_D0"), 0)
        HfFilter(FilterConfig(qa_level=1), qa=qa).process_event(_event(_dzero(0, p_mother=10.0)))
        self.assertEqual(qa.count("mass_vs_pt_D0"), 1)

    def test_dalitz_and_cluster_products(self) -> None:
        """Dalitz bits and skimmed clusters are reported without firing triggers."""
        electron = dict(
            tpc_nsigma_el=0.0, tpc_nsigma_pi=5.0, tpc_nsigma_ka=5.0, tpc_nsigma_pr=10.0,
            tpc_ncls_found=100, tpc_inner_param=0.5,
        )
        tracks = [
            TrackState(index=0, px=0.5, py=0.0, pz=0.0, charge=1, **electron),
            TrackState(index=1, px=0.5, py=0.005, pz=0.0, charge=-1, **electron),
        ]
        clusters = (
            CaloCluster(index=0, energy=1.0, eta=0.0, phi=0.0, time=0.0, m02=0.5),
            CaloCluster(index=1, energy=1.0, eta=0.0, phi=0.0, time=500.0, m02=0.5),
        )
        config = FilterConfig(dalitz=DalitzConfig(track_cuts=(DalitzTrackCut(),), pair_cuts=(DalitzPairCut(),)))
        decision = HfFilter(config).process_event(_event(tracks, clusters=clusters))
        self.assertEqual(decision.dalitz_bits, {0: 1, 1: 1})
        self.assertEqual(decision.selected_cluster_indices, (0,))
        self.assertFalse(decision.accepted)

    def test_process_events_logs_summary(self) -> None:
        """Batch processing returns one decision per event."""
        with self.assertLogs("hftrigger.filter", level="INFO"):
            decisions = HfFilter().process_events([_event(_dzero(0, p_mother=10.0)), _event([])])
        self.assertEqual([d.accepted for d in decisions], [True, False])


if __name__ == "__main__":
    unittest.main()
