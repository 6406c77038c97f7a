"""
inferkit :: Logits Processors

Logits shaping applied before sampling:
  - temperature scaling
  - top-k filtering (ties with the k-th value survive)
  - top-p (nucleus) filtering

Each processor takes logits and returns new logits (masked entries
become -inf). Inputs are never modified in place.

INL - 2025
"""

import torch
from typing import List


class LogitsProcessor:
    """Base class for logits processors. The identity."""

    def __call__(self, logits: torch.Tensor, generated_ids: List[int]) -> torch.Tensor:
        return logits


class TemperatureProcessor(LogitsProcessor):
    """Divide logits by temperature (>0). Higher = flatter distribution."""

    def __init__(self, temperature: float):
        if temperature <= 0:
            raise ValueError(f"temperature must be > 0, got {temperature}")
        self.temperature = temperature

    def __call__(self, logits: torch.Tensor, generated_ids: List[int]) -> torch.Tensor:
        if self.temperature == 1.0:
            return logits
        return logits / self.temperature


class TopKProcessor(LogitsProcessor):
    """Keep the k highest logits; everything strictly below the k-th value is masked."""

    def __init__(self, k: int):
        self.k = k

    def __call__(self, logits: torch.Tensor, generated_ids: List[int]) -> torch.Tensor:
        if self.k <= 0 or self.k >= logits.shape[-1]:
            return logits
        top_k_values, _ = logits.topk(self.k)
        threshold = top_k_values[-1]
        return logits.masked_fill(logits < threshold, float("-inf"))


class TopPProcessor(LogitsProcessor):
    """
    Nucleus filtering.

    Keeps the smallest set of highest-probability tokens whose cumulative
    probability reaches p. The most likely token always survives.
    """

    def __init__(self, p: float):
        self.p = p

    def __call__(self, logits: torch.Tensor, generated_ids: List[int]) -> torch.Tensor:
        if self.p >= 1.0:
            return logits
        sorted_logits, sorted_indices = logits.sort(descending=True)
        probs = torch.softmax(sorted_logits, dim=-1)
        cumulative = probs.cumsum(dim=-1)

        # A token is dropped once the mass before it already reaches p
        remove_sorted = (cumulative - probs) >= self.p
        remove_sorted[0] = False
        remove = torch.zeros_like(remove_sorted).scatter(0, sorted_indices, remove_sorted)
        return logits.masked_fill(remove, float("-inf"))


def apply_logits_processors(
    logits: torch.Tensor,
    processors: List[LogitsProcessor],
    generated_ids: List[int],
) -> torch.Tensor:
    """Apply a chain of logits processors."""
    for proc in processors:
        logits = proc(logits, generated_ids)
    return logits
