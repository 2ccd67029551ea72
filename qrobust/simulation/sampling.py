"""Resampling of return histories and perturbation of strategy parameters.

Both components draw from an explicit :class:`numpy.random.Generator`, so a
fixed seed reproduces the same scenarios.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

import numpy as np
import pandas as pd

from qrobust.utils.validation import InsufficientDataError, QrobustValidationError

ReturnData = pd.Series | pd.DataFrame | np.ndarray


def _as_generator(rng: np.random.Generator | int | None) -> np.random.Generator:
    if isinstance(rng, np.random.Generator):
        return rng
    return np.random.default_rng(rng)


def take_rows(data: ReturnData, idx: np.ndarray) -> ReturnData:
    """Rows *idx* of *data*, same container type, positional index for pandas."""
    if isinstance(data, pd.DataFrame):
        return pd.DataFrame(data.to_numpy()[idx], columns=data.columns)
    if isinstance(data, pd.Series):
        return pd.Series(data.to_numpy()[idx], name=data.name)
    return np.asarray(data)[idx]


class BlockBootstrapSampler:
    """Moving-block bootstrap of a return history.

    Contiguous blocks of ``block_length`` observations are drawn from random
    start offsets and concatenated until the target length is reached (the
    last block is truncated).  Multi-asset histories (2-D) are resampled by
    row, so cross-sectional structure within a date is kept.

    Parameters
    ----------
    returns : Series, DataFrame or ndarray
        Original history; rows are periods.
    block_length : int
        Observations per block.  ``1`` is i.i.d. resampling; a length at
        least the history's reproduces the history itself.
    rng : Generator or int, optional
        Random source or seed.
    """

    def __init__(
        self,
        returns: ReturnData,
        block_length: int = 22,
        rng: np.random.Generator | int | None = None,
    ) -> None:
        if block_length < 1:
            raise QrobustValidationError(f"block_length must be >= 1; got {block_length!r}.")
        if len(returns) == 0:
            raise InsufficientDataError("Cannot bootstrap an empty return series.")
        self.returns = returns
        self.block_length = int(block_length)
        self.rng = _as_generator(rng)

    @property
    def num_blocks(self) -> int:
        return -(-len(self.returns) // self.block_length)

    def sample_indices(
        self,
        target_length: int | None = None,
        rng: np.random.Generator | None = None,
    ) -> np.ndarray:
        """Row positions of one bootstrap sample."""
        rng = rng or self.rng
        n = len(self.returns)
        target = n if target_length is None else int(target_length)
        max_start = max(0, n - self.block_length)
        blocks = []
        drawn = 0
        while drawn < target:
            start = int(rng.integers(0, max_start + 1))
            block = np.arange(start, min(start + self.block_length, n))
            blocks.append(block)
            drawn += block.size
        if not blocks:
            return np.empty(0, dtype=int)
        return np.concatenate(blocks)[:target]

    def generate_sample(
        self,
        target_length: int | None = None,
        rng: np.random.Generator | None = None,
    ) -> ReturnData:
        """One resampled history (defaults to the original length)."""
        return take_rows(self.returns, self.sample_indices(target_length, rng))


@dataclass(frozen=True)
class PerturbedParameters:
    """Parameters after perturbation, with the relative shock applied to each.

    ``perturbations[name]`` is the ``U`` in ``value * (1 + U)``; it is 0
    for non-numeric parameters.
    """

    parameters: dict[str, Any]
    perturbations: dict[str, float] = field(default_factory=dict)


class ParameterPerturbation:
    """Randomly scale numeric strategy parameters.

    Each numeric parameter is multiplied by ``1 + U`` with
    ``U ~ Uniform(-magnitude, +magnitude)``.  Integers stay integers
    (rounded after scaling); booleans and non-numeric values are untouched.

    Parameters
    ----------
    base_parameters : mapping
        Parameters to perturb.
    magnitude : float
        Maximum relative shock.
    rng : Generator or int, optional
        Random source or seed.
    """

    def __init__(
        self,
        base_parameters: Mapping[str, Any],
        magnitude: float = 0.1,
        rng: np.random.Generator | int | None = None,
    ) -> None:
        if magnitude < 0:
            raise QrobustValidationError(f"magnitude must be non-negative; got {magnitude!r}.")
        self.base_parameters = dict(base_parameters)
        self.magnitude = float(magnitude)
        self.rng = _as_generator(rng)

    def generate(self, rng: np.random.Generator | None = None) -> PerturbedParameters:
        rng = rng or self.rng
        parameters: dict[str, Any] = {}
        perturbations: dict[str, float] = {}
        for name, value in self.base_parameters.items():
            if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
                parameters[name] = value
                perturbations[name] = 0.0
                continue
            shock = float(rng.uniform(-self.magnitude, self.magnitude))
            scaled = value * (1 + shock)
            if isinstance(value, (int, np.integer)):
                scaled = int(round(scaled))
            parameters[name] = scaled
            perturbations[name] = shock
        return PerturbedParameters(parameters, perturbations)
