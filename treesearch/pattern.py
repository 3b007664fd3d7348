from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Tuple

from treesearch.hit import Hit


@dataclass(frozen=True, eq=False)
class PatternNode:
    r"""
    A tree-search result: a bin in (z, x) space plus the hits consistent with it.

    The bin is a quadrilateral bounded by the planes ``z = zl`` and
    ``z = zu`` and by a left and a right edge, each a straight line given by
    its x values at the two z bounds:

    .. code-block:: text

        zu   xul ------------ xur
              \                \
        zl     xll ------------ xlr

    Attributes
    ----------
    zl, zu : float
        Lower and upper z of the bin (m), ``zl <= zu``.
    xll, xlr : float
        Left/right x at ``zl`` (m), ``xll <= xlr``.
    xul, xur : float
        Left/right x at ``zu`` (m), ``xul <= xur``.
    hits : frozenset of Hit
        Hits found in the bin by the tree search.
    """
    zl: float
    zu: float
    xll: float
    xlr: float
    xul: float
    xur: float
    hits: FrozenSet[Hit] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if self.zl > self.zu:
            raise ValueError(f"PatternNode z range is inverted: zl={self.zl} > zu={self.zu}")
        if self.xll > self.xlr or self.xul > self.xur:
            raise ValueError("PatternNode left edge lies right of its right edge")
        if not isinstance(self.hits, frozenset):
            object.__setattr__(self, "hits", frozenset(self.hits))

    @classmethod
    def from_hits(
        cls,
        hits: Iterable[Hit],
        zl: float,
        zu: float,
        lower: Tuple[float, float],
        upper: Tuple[float, float],
    ) -> "PatternNode":
        """Convenience constructor taking ``(left, right)`` pairs at each z bound."""
        return cls(zl, zu, lower[0], lower[1], upper[0], upper[1], frozenset(hits))

    def x_range(self, z: float) -> Tuple[float, float]:
        """Left/right x of the bin edges at ``z`` (linear in z, extrapolated outside)."""
        if self.zl == self.zu:
            return min(self.xll, self.xul), max(self.xlr, self.xur)
        return edge_at(self.zl, self.xll, self.zu, self.xul, z), edge_at(self.zl, self.xlr, self.zu, self.xur, z)


def edge_at(z0: float, x0: float, z1: float, x1: float, z: float) -> float:
    """x of the straight edge through ``(z0, x0)`` and ``(z1, x1)`` at ``z``; constant if ``z0 == z1``."""
    if z1 == z0:
        return x0
    return x0 + (x1 - x0) * (z - z0) / (z1 - z0)


__all__ = ["PatternNode", "edge_at"]
