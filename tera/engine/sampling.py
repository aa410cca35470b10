"""Token sampling and repetition penalty.

All functions expect a 1-D score vector over the vocabulary (float32, CPU).
"""

from __future__ import annotations

from typing import Sequence

import torch

# Temperatures below this are treated as greedy decoding.
_GREEDY_EPS = 1e-7


def apply_repeat_penalty(scores: torch.Tensor, penalty: float, context: Sequence[int]) -> torch.Tensor:
    """Down-weight every token id that appears in `context`.

    Positive scores are divided by `penalty`, negative ones multiplied, so a
    seen token always becomes less likely. Each id is penalized once no matter
    how often it repeats. Ids outside the vocabulary are ignored.

    Returns a new tensor; `scores` is not modified.
    """
    vocab_size = scores.shape[-1]
    seen = sorted({int(t) for t in context if 0 <= int(t) < vocab_size})
    out = scores.clone()
    if not seen:
        return out
    idx = torch.tensor(seen, dtype=torch.long, device=scores.device)
    values = out[idx]
    out[idx] = torch.where(values >= 0, values / penalty, values * penalty)
    return out


def top_p_filter(probs: torch.Tensor, top_p: float) -> torch.Tensor:
    """Zero the tail of `probs` outside the top-p nucleus and renormalize.

    The most likely token is always kept.
    """
    sorted_probs, sorted_indices = torch.sort(probs, descending=True)
    cumulative = torch.cumsum(sorted_probs, dim=-1)

    # Drop a token once the mass before it already reaches top_p.
    remove = (cumulative - sorted_probs) >= top_p
    remove[0] = False

    mask = torch.zeros_like(remove)
    mask.scatter_(0, sorted_indices, remove)
    filtered = probs.masked_fill(mask, 0.0)
    return filtered / filtered.sum()


class SamplingPolicy:
    """Seeded token sampler.

    The random stream advances on every draw, so a run is reproducible for a
    given seed but consecutive draws differ. One instance belongs to exactly
    one run.
    """

    def __init__(self, seed: int, temperature: float | None = None, top_p: float | None = None) -> None:
        self.seed = int(seed)
        self.temperature = temperature
        self.top_p = top_p
        self._generator = torch.Generator(device="cpu")
        self._generator.manual_seed(self.seed)

    def sample(self, scores: torch.Tensor) -> int:
        if scores.dim() != 1:
            raise ValueError(f"Expected a 1-D score vector, got shape {tuple(scores.shape)}")

        if self.temperature is None or self.temperature < _GREEDY_EPS:
            return int(torch.argmax(scores).item())

        probs = torch.softmax(scores.float() / float(self.temperature), dim=-1)
        if self.top_p is not None and 0 < self.top_p < 1:
            probs = top_p_filter(probs, self.top_p)

        return int(torch.multinomial(probs, 1, generator=self._generator).item())
