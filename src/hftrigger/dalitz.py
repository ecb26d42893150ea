"""Dalitz electron-pair tagging.

Cut pair i (track cut i, pair cut i) owns bit i of an 8-bit map. A track
first collects the bits of the track cuts it passes; every opposite-sign
pair then tests the pair cuts of the bits both tracks share, and a passing
pair sets that bit on both tracks.

With a QA recorder, every passing pair is filled as (mass, pT) under its
cut-pair label, and every tagged track adds one `dalitz_track_stats` entry
per bit it carries.
"""

from __future__ import annotations

import logging
import math
from itertools import combinations
from typing import Sequence

from .candidates import EventArena
from .config import DalitzConfig, DalitzPairCut, DalitzTrackCut
from .models import TrackState
from .physics import invariant_mass, sum_momenta
from .pid import MASS_ELECTRON
from .qa import FillRecorder

logger = logging.getLogger(__name__)

QA_DALITZ_TRACK_STATS = "dalitz_track_stats"
QA_DALITZ_PAIR = "dalitz_pair_{}"


class DalitzTagger:
    def __init__(
        self,
        track_cuts: Sequence[DalitzTrackCut],
        pair_cuts: Sequence[DalitzPairCut],
        arena: EventArena | None = None,
        qa: FillRecorder | None = None,
    ) -> None:
        # Raises ConfigurationError on mismatched lists or more than 8 cut pairs.
        self.config = DalitzConfig(track_cuts=tuple(track_cuts), pair_cuts=tuple(pair_cuts))
        self.arena = arena if arena is not None else EventArena()
        self.qa = qa
        self.labels = [f"{t.name}_{p.name}" for t, p in zip(self.config.track_cuts, self.config.pair_cuts)]
        logger.info("Dalitz tagging with cut pairs: %s", ", ".join(self.labels) or "none")

    @classmethod
    def from_config(
        cls, config: DalitzConfig, arena: EventArena | None = None, qa: FillRecorder | None = None
    ) -> "DalitzTagger":
        return cls(config.track_cuts, config.pair_cuts, arena=arena, qa=qa)

    def tag_event(self, tracks: Sequence[TrackState]) -> dict[int, int]:
        """Return the Dalitz bit map of every tagged track, keyed by track index."""
        arena = self.arena
        qa = self.qa
        arena.reset(len(tracks))
        for pos, track in enumerate(tracks):
            arena.dalitz_track_map[pos] = self.track_filter_map(track)

        for (pos1, track1), (pos2, track2) in combinations(enumerate(tracks), 2):
            if track1.charge * track2.charge > 0:
                continue
            common = int(arena.dalitz_track_map[pos1] & arena.dalitz_track_map[pos2])
            if not common:
                continue
            mass, pt = pair_mass_and_pt(track1, track2)
            for bit, pair_cut in enumerate(self.config.pair_cuts):
                if common & (1 << bit) and is_selected_pair(mass, pt, pair_cut):
                    arena.dalitz_pair_map[pos1] |= 1 << bit
                    arena.dalitz_pair_map[pos2] |= 1 << bit
                    if qa is not None:
                        qa.fill(QA_DALITZ_PAIR.format(self.labels[bit]), mass, pt)

        tagged = {
            track.index: int(arena.dalitz_pair_map[pos])
            for pos, track in enumerate(tracks)
            if arena.dalitz_pair_map[pos]
        }
        if qa is not None:
            for bits in tagged.values():
                for bit in range(len(self.labels)):
                    if bits & (1 << bit):
                        qa.fill(QA_DALITZ_TRACK_STATS, bit)
        return tagged

    def track_filter_map(self, track: TrackState) -> int:
        filter_map = 0
        for bit, cut in enumerate(self.config.track_cuts):
            if cut.is_selected(track):
                filter_map |= 1 << bit
        return filter_map


def pair_mass_and_pt(track1: TrackState, track2: TrackState) -> tuple[float, float]:
    """e+e- invariant mass and pair pT."""
    mass = invariant_mass((track1.momentum, track2.momentum), (MASS_ELECTRON, MASS_ELECTRON))
    px, py, _ = sum_momenta((track1.momentum, track2.momentum))
    return mass, math.hypot(px, py)


def is_selected_pair(mass: float, pt: float, cut: DalitzPairCut) -> bool:
    return cut.min_mass <= mass <= cut.max_mass and pt >= cut.min_pt
