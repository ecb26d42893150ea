"""Calorimeter cluster skimming with a time and shower-shape (M02) window."""

from __future__ import annotations

import logging
from typing import Iterable

from .config import ClusterCuts
from .models import CaloCluster
from .qa import FillRecorder

logger = logging.getLogger(__name__)

QA_CLUSTER_FILTER = "calo_cluster_filter"
QA_CLUSTER_ENERGY_IN = "calo_cluster_energy_in"
QA_CLUSTER_ENERGY_OUT = "calo_cluster_energy_out"

# Filter steps recorded in QA_CLUSTER_FILTER.
STEP_IN = 0
STEP_TIME_CUT = 1
STEP_M02_CUT = 2
STEP_OUT = 3


def skim_clusters(
    clusters: Iterable[CaloCluster],
    cuts: ClusterCuts,
    qa: FillRecorder | None = None,
) -> list[CaloCluster]:
    """Keep clusters inside the time and M02 windows.

    Every cluster is recorded as `STEP_IN`; rejected ones add the step that
    removed them and accepted ones add `STEP_OUT`. Cluster energies are
    recorded before and after the cuts.
    """
    selected = []
    for cluster in clusters:
        if qa is not None:
            qa.fill(QA_CLUSTER_FILTER, STEP_IN)
            qa.fill(QA_CLUSTER_ENERGY_IN, cluster.energy)
        if cluster.time > cuts.max_time or cluster.time < cuts.min_time:
            if qa is not None:
                qa.fill(QA_CLUSTER_FILTER, STEP_TIME_CUT)
            continue
        if cluster.m02 > cuts.max_m02 or cluster.m02 < cuts.min_m02:
            if qa is not None:
                qa.fill(QA_CLUSTER_FILTER, STEP_M02_CUT)
            continue
        if qa is not None:
            qa.fill(QA_CLUSTER_FILTER, STEP_OUT)
            qa.fill(QA_CLUSTER_ENERGY_OUT, cluster.energy)
        selected.append(cluster)
    return selected


class ClusterSkimmer:
    """Stateful wrapper that logs its cuts once and owns an optional QA recorder."""

    def __init__(self, cuts: ClusterCuts | None = None, qa: FillRecorder | None = None) -> None:
        self.cuts = cuts if cuts is not None else ClusterCuts()
        self.qa = qa
        logger.info("Cluster timing cut: %g <= t <= %g", self.cuts.min_time, self.cuts.max_time)
        logger.info("Cluster M02 cut: %g <= M02 <= %g", self.cuts.min_m02, self.cuts.max_m02)

    def __call__(self, clusters: Iterable[CaloCluster]) -> list[CaloCluster]:
        return skim_clusters(clusters, self.cuts, self.qa)
