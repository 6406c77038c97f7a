"""
inferkit :: Sampling

Sampling strategies for token generation.
All outputs are plain int token IDs.

Strategies:
  - greedy (argmax) when temperature == 0 and no top-k / top-p is set
  - categorical sampling over processed logits otherwise

INL - 2025
"""

import numpy as np
import torch
from typing import Optional, List
from dataclasses import dataclass, field

from inferkit.core.logits_processor import (
    LogitsProcessor, TemperatureProcessor, TopKProcessor, TopPProcessor,
    apply_logits_processors,
)


@dataclass
class SamplingParams:
    """
    Sampling parameters.

    temperature 0.0 with top_k 0 and top_p 1.0 means greedy decoding.
    """
    temperature: float = 0.0
    top_k: int = 0
    top_p: float = 1.0
    max_tokens: int = 256
    stop_sequences: List[str] = field(default_factory=list)
    seed: Optional[int] = None

    def __post_init__(self):
        if self.temperature < 0:
            raise ValueError(f"temperature must be >= 0, got {self.temperature}")
        if self.top_k < 0:
            raise ValueError(f"top_k must be >= 0, got {self.top_k}")
        if not 0.0 < self.top_p <= 1.0:
            raise ValueError(f"top_p must be in (0, 1], got {self.top_p}")
        if self.max_tokens < 0:
            raise ValueError(f"max_tokens must be >= 0, got {self.max_tokens}")

    @property
    def is_greedy(self) -> bool:
        return self.temperature == 0.0 and self.top_k == 0 and self.top_p >= 1.0


def build_processors(params: SamplingParams) -> List[LogitsProcessor]:
    """Build the logits-processing chain for a request (temperature → top-k → top-p)."""
    processors: List[LogitsProcessor] = []
    if params.temperature > 0:
        processors.append(TemperatureProcessor(params.temperature))
    if params.top_k > 0:
        processors.append(TopKProcessor(params.top_k))
    if params.top_p < 1.0:
        processors.append(TopPProcessor(params.top_p))
    return processors


def make_generator(seed: Optional[int]) -> Optional[torch.Generator]:
    """Seeded CPU generator, or None to use torch's global RNG."""
    if seed is None:
        return None
    generator = torch.Generator()
    generator.manual_seed(seed)
    return generator


def sample_token(
    logits,
    params: SamplingParams,
    past_tokens: Optional[List[int]] = None,
    generator: Optional[torch.Generator] = None,
    processors: Optional[List[LogitsProcessor]] = None,
) -> int:
    """
    Sample a single token from last-position logits.

    Args:
        logits: (vocab_size,) float array or tensor
        params: sampling parameters
        past_tokens: previously generated tokens (passed to processors)
        generator: RNG for categorical sampling (see make_generator)
        processors: prebuilt chain; built from params when omitted

    Returns:
        token_id: int
    """
    if isinstance(logits, np.ndarray):
        logits = torch.from_numpy(np.array(logits, dtype=np.float32))
    logits = logits.float().reshape(-1)

    if params.is_greedy:
        return int(logits.argmax().item())

    if processors is None:
        processors = build_processors(params)
    logits = apply_logits_processors(logits, processors, past_tokens or [])

    probs = torch.softmax(logits, dim=-1)
    return int(torch.multinomial(probs, num_samples=1, generator=generator).item())
