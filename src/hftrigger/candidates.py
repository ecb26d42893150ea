"""Independent-candidate counting and per-event scratch storage."""

from __future__ import annotations

from typing import Collection, Sequence

import numpy as np

from .bits import BeautyTrackSelection


def compute_number_of_candidates(indices: Sequence[Collection[int]]) -> int:
    """Classify an event by how many of its candidates share no daughter.

    Returns the number of candidates when there are fewer than two. Otherwise
    returns 0 if every candidate shares a track with every other one, and 2
    if at least one pair of candidates is disjoint.
    """
    if len(indices) < 2:
        return len(indices)

    index_sets = [frozenset(idx) for idx in indices]
    max_independent = 0
    for i, first in enumerate(index_sets):
        n_independent = sum(
            1 for j, second in enumerate(index_sets) if i != j and first.isdisjoint(second)
        )
        max_independent = max(max_independent, n_independent)
    return 0 if max_independent == 0 else 2


class EventArena:
    """Per-track scratch arrays addressed by position in the event's track list.

    `reset(n)` zeroes the first `n` slots and only reallocates when the
    event has more tracks than the current capacity.
    """

    def __init__(self, capacity: int = 64) -> None:
        self._capacity = 0
        self._size = 0
        self.beauty_tag = np.zeros(0, dtype=np.int8)
        self.femto_proton = np.zeros(0, dtype=bool)
        self.dalitz_track_map = np.zeros(0, dtype=np.uint8)
        self.dalitz_pair_map = np.zeros(0, dtype=np.uint8)
        self._grow(capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def size(self) -> int:
        return self._size

    def reset(self, n_tracks: int) -> None:
        if n_tracks < 0:
            raise ValueError("Number of tracks cannot be negative.")
        if n_tracks > self._capacity:
            self._grow(max(n_tracks, 2 * self._capacity))
        self.beauty_tag[:n_tracks] = BeautyTrackSelection.REJECTED
        self.femto_proton[:n_tracks] = False
        self.dalitz_track_map[:n_tracks] = 0
        self.dalitz_pair_map[:n_tracks] = 0
        self._size = n_tracks

    def _grow(self, capacity: int) -> None:
        self.beauty_tag = np.zeros(capacity, dtype=np.int8)
        self.femto_proton = np.zeros(capacity, dtype=bool)
        self.dalitz_track_map = np.zeros(capacity, dtype=np.uint8)
        self.dalitz_pair_map = np.zeros(capacity, dtype=np.uint8)
        self._capacity = capacity
