"""Seedable random sources for the Monte Carlo projector.

The projector never touches global RNG state.  It asks an injected
:class:`RandomSource` for one generator per simulation path, so a path's
draws depend only on the source's seed and the path index, never on how
paths were split across workers.
"""

from __future__ import annotations

import math
from typing import Optional, Protocol, Sequence, Union

import numpy as np


class UniformGenerator(Protocol):
    """Anything that yields uniform floats in ``[0, 1)``, e.g. ``np.random.Generator``."""

    def random(self, size: Union[int, Sequence[int], None] = None) -> np.ndarray: ...


class RandomSource(Protocol):
    """Factory of per-path uniform generators."""

    def for_path(self, index: int) -> UniformGenerator: ...


class SeededRandomSource:
    """Derive each path's generator from ``(seed, path_index)``.

    Without a seed, fresh OS entropy is drawn once at construction, so all
    paths of one run still come from a single reproducible root.
    """

    def __init__(self, seed: Optional[int] = None) -> None:
        if seed is None:
            seed = int(np.random.SeedSequence().entropy)
        self.seed = seed

    def for_path(self, index: int) -> np.random.Generator:
        return np.random.default_rng([self.seed, index])

    def __repr__(self) -> str:
        return f"SeededRandomSource(seed={self.seed})"


def box_muller(u1: np.ndarray, u2: np.ndarray) -> np.ndarray:
    """Standard normals from uniforms: sqrt(-2 ln u1) * cos(2 pi u2).

    *u1* must lie in ``(0, 1]``.
    """
    return np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * math.pi * u2)


def standard_normals(gen: UniformGenerator, shape: tuple[int, ...]) -> np.ndarray:
    """Draw an array of standard normal variates from *gen* via Box-Muller."""
    # random() is in [0, 1); flip to (0, 1] so log(u1) is finite.
    u1 = 1.0 - np.asarray(gen.random(shape), dtype=float)
    u2 = np.asarray(gen.random(shape), dtype=float)
    return box_muller(u1, u2)
