"""Bit-set value type and the enumerations that name its bits.

`SelectionBits` is the per-candidate tag threaded through preselection, mass
tagging and ML classification. It is an immutable 8-bit signed value: each
stage returns a new instance, so a stage can only touch the bits it tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Iterator

_MAX_BIT = 6  # bit 7 is the sign bit of the signed 8-bit representation


@dataclass(frozen=True)
class SelectionBits:
    """Immutable set of hypothesis flags stored as a signed 8-bit integer."""

    value: int = 0

    def __post_init__(self) -> None:
        if not -128 <= self.value <= 127:
            raise ValueError(f"SelectionBits value {self.value} is outside the int8 range.")

    @classmethod
    def of(cls, *bits: int) -> "SelectionBits":
        """Build a mask with the given bit positions set."""
        value = 0
        for bit in bits:
            value |= 1 << _check_bit(bit)
        return cls(value)

    def has(self, bit: int) -> bool:
        """Return whether `bit` is set."""
        return bool(self.value & (1 << _check_bit(bit)))

    def with_bit(self, bit: int) -> "SelectionBits":
        """Return a copy with `bit` set."""
        return SelectionBits(self.value | (1 << _check_bit(bit)))

    def without_bit(self, bit: int) -> "SelectionBits":
        """Return a copy with `bit` cleared."""
        return SelectionBits(self.value & ~(1 << _check_bit(bit)))

    def restricted_to(self, other: "SelectionBits") -> "SelectionBits":
        """Keep only the bits also set in `other`."""
        return self & other

    def is_subset_of(self, other: "SelectionBits") -> bool:
        """Return whether every set bit is also set in `other`."""
        return (self.value & ~other.value) == 0

    def bits(self) -> Iterator[int]:
        """Yield set bit positions in increasing order."""
        for bit in range(_MAX_BIT + 1):
            if self.value & (1 << bit):
                yield bit

    def __and__(self, other: "SelectionBits") -> "SelectionBits":
        return SelectionBits(self.value & other.value)

    def __or__(self, other: "SelectionBits") -> "SelectionBits":
        return SelectionBits(self.value | other.value)

    def __bool__(self) -> bool:
        return self.value != 0

    def __int__(self) -> int:
        return self.value


EMPTY = SelectionBits()


def _check_bit(bit: int) -> int:
    bit = int(bit)
    if not 0 <= bit <= _MAX_BIT:
        raise ValueError(f"Bit position {bit} is outside 0..{_MAX_BIT}.")
    return bit


class D0Hypothesis(IntEnum):
    """D0 (pi+ K-) and D0bar (K+ pi-) mass assignments of an opposite-sign pair."""

    D0 = 0
    D0BAR = 1


class DplusHypothesis(IntEnum):
    """Single K pi pi assignment of a D+ candidate."""

    KPIPI = 0


class DsHypothesis(IntEnum):
    """Ds assignments; the kaon pair is (same-charge track, opposite track)."""

    KKPI = 0
    PIKK = 1


class CharmBaryonHypothesis(IntEnum):
    """Lc/Xic assignments; the proton is the first or second same-charge track."""

    PKPI = 0
    PIKP = 1


class OriginType(IntEnum):
    """Origin classes produced by the ML classifier."""

    NONE = 0
    PROMPT = 1
    NON_PROMPT = 2


class HfTrigger(IntEnum):
    """Software-trigger classes decided per event."""

    HIGH_PT_2P = 0
    HIGH_PT_3P = 1
    BEAUTY_3P = 2
    BEAUTY_4P = 3
    FEMTO_2P = 4
    FEMTO_3P = 5
    DOUBLE_CHARM_2P = 6
    DOUBLE_CHARM_3P = 7
    DOUBLE_CHARM_MIX = 8
    GAMMA_CHARM_2P = 9
    GAMMA_CHARM_3P = 10


HF_TRIGGER_NAMES: dict[HfTrigger, str] = {
    HfTrigger.HIGH_PT_2P: "highPt2P",
    HfTrigger.HIGH_PT_3P: "highPt3P",
    HfTrigger.BEAUTY_3P: "beauty3P",
    HfTrigger.BEAUTY_4P: "beauty4P",
    HfTrigger.FEMTO_2P: "femto2P",
    HfTrigger.FEMTO_3P: "femto3P",
    HfTrigger.DOUBLE_CHARM_2P: "doubleCharm2P",
    HfTrigger.DOUBLE_CHARM_3P: "doubleCharm3P",
    HfTrigger.DOUBLE_CHARM_MIX: "doubleCharmMix",
    HfTrigger.GAMMA_CHARM_2P: "gammaCharm2P",
    HfTrigger.GAMMA_CHARM_3P: "gammaCharm3P",
}


class CharmParticle(IntEnum):
    D0 = 0
    DPLUS = 1
    DS = 2
    LC = 3
    XIC = 4


CHARM_PARTICLE_NAMES: dict[CharmParticle, str] = {
    CharmParticle.D0: "D0",
    CharmParticle.DPLUS: "Dplus",
    CharmParticle.DS: "Ds",
    CharmParticle.LC: "Lc",
    CharmParticle.XIC: "Xic",
}


class BeautyParticle(IntEnum):
    BPLUS = 0
    B0_TO_DSTAR = 1
    B0 = 2
    BS = 3
    LB = 4
    XIB = 5


BEAUTY_PARTICLE_NAMES: dict[BeautyParticle, str] = {
    BeautyParticle.BPLUS: "Bplus",
    BeautyParticle.B0_TO_DSTAR: "B0toDStar",
    BeautyParticle.B0: "B0",
    BeautyParticle.BS: "Bs",
    BeautyParticle.LB: "Lb",
    BeautyParticle.XIB: "Xib",
}


class BeautyTrackSelection(IntEnum):
    """Tri-state outcome of the beauty-bachelor track test."""

    REJECTED = 0
    SOFT_PION = 1
    REGULAR = 2
