"""Temperature and nucleus (top-p) sampling of the next token."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

_U64 = (1 << 64) - 1


@dataclass
class SamplingParams:
    """Settings for token generation."""

    temperature: float = 0.7
    top_p: float = 0.9
    max_tokens: int = 256


@dataclass
class XorShiftRng:
    """Small xorshift64 generator; not suitable for cryptography."""

    state: int = 0x12345678_9ABCDEF0

    def next_float(self) -> float:
        """Advance the state and return a value in ``[0, 1)`` with 24 bits of resolution."""
        s = self.state
        s ^= (s << 13) & _U64
        s ^= s >> 7
        s ^= (s << 17) & _U64
        self.state = s
        return (s & 0x00FF_FFFF) / 0x0100_0000


_DEFAULT_RNG = XorShiftRng()


def _greedy(logits: np.ndarray) -> int:
    if logits.size == 0:
        return 0
    # Ties go to the highest index.
    return logits.size - 1 - int(np.argmax(logits[::-1]))


def sample_token(
    logits: Sequence[float] | np.ndarray,
    temperature: float,
    top_p: float,
    rng: XorShiftRng | None = None,
) -> int:
    """Pick a token id from ``logits``.

    A temperature below 1e-6 selects the largest logit; otherwise the softmax of
    ``logits / temperature`` is cut to the smallest prefix (by probability) whose
    mass reaches ``top_p`` and a token is drawn from it.
    """
    arr = np.asarray(logits, dtype=np.float32).ravel()
    if np.isnan(arr).any():
        raise ValueError("logits contain NaN")
    if temperature < 1e-6:
        return _greedy(arr)
    if arr.size == 0:
        raise ValueError("cannot sample from empty logits")
    rng = _DEFAULT_RNG if rng is None else rng

    scaled = arr / np.float32(temperature)
    probs = np.exp(scaled - scaled.max())
    probs = probs / probs.sum(dtype=np.float32)
    if np.isnan(probs).any():
        raise ValueError("probabilities are not finite")

    order = np.argsort(-probs, kind="stable")
    sorted_p = probs[order]
    cumulative = np.cumsum(sorted_p, dtype=np.float32)
    reached = np.flatnonzero(cumulative >= np.float32(top_p))
    cutoff = int(reached[0]) + 1 if reached.size else order.size

    kept = cumulative[:cutoff]
    r = np.float32(rng.next_float()) * kept[-1]
    hit = np.flatnonzero(kept >= r)
    return int(order[hit[0]]) if hit.size else int(order[0])