"""Public package exports for the heavy-flavour trigger selection."""

from .bits import (
    EMPTY,
    BeautyTrackSelection,
    CharmParticle,
    HfTrigger,
    OriginType,
    SelectionBits,
)
from .calibration import CalibrationProvider, PostCalibration, corrected_nsigma
from .candidates import EventArena, compute_number_of_candidates
from .config import FilterConfig, load_filter_config
from .dalitz import DalitzTagger
from .errors import CalibrationError, ConfigurationError, HfTriggerError, InferenceError, ModelLoadError
from .filter import HfFilter
from .ml import (
    FAILED_SCORES,
    CallableBackend,
    ModelProvider,
    Scorer,
    TorchScriptBackend,
    is_bdt_selected,
)
from .models import (
    BeautyCandidate,
    CaloCluster,
    CharmCandidate,
    EventDecision,
    EventInput,
    LorentzVector,
    ParticleHypothesis,
    TrackState,
    V0Photon,
)
from .physics import compute_relative_momentum
from .pid import PIDSpecies, particle_hypothesis_from_name
from .qa import FillRecorder
from .skim import ClusterSkimmer, skim_clusters

__all__ = [
    "HfFilter",
    "FilterConfig",
    "load_filter_config",
    "TrackState",
    "V0Photon",
    "CaloCluster",
    "EventInput",
    "EventDecision",
    "CharmCandidate",
    "BeautyCandidate",
    "LorentzVector",
    "ParticleHypothesis",
    "SelectionBits",
    "EMPTY",
    "HfTrigger",
    "CharmParticle",
    "OriginType",
    "BeautyTrackSelection",
    "PIDSpecies",
    "PostCalibration",
    "CalibrationProvider",
    "corrected_nsigma",
    "compute_number_of_candidates",
    "EventArena",
    "compute_relative_momentum",
    "is_bdt_selected",
    "FAILED_SCORES",
    "Scorer",
    "ModelProvider",
    "TorchScriptBackend",
    "CallableBackend",
    "DalitzTagger",
    "ClusterSkimmer",
    "skim_clusters",
    "FillRecorder",
    "particle_hypothesis_from_name",
    "HfTriggerError",
    "ConfigurationError",
    "CalibrationError",
    "ModelLoadError",
    "InferenceError",
]
