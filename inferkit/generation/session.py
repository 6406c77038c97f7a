"""
inferkit :: Generative Session

Incremental decoding over an InferenceSession with a KV cache.

States:
    empty   no cache, cache_sequence_length() == 0
    primed  cache populated, cache_sequence_length() >= 1

    prefill(ids)  empty|primed → primed   (cache replaced)
    decode(id)    primed → primed         (cache grows by one position)
    reset_cache() → empty

A session is not thread-safe: use one per concurrent generation.

INL - 2025
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence

import numpy as np

from inferkit.core.exceptions import InferenceError, SessionStateError
from inferkit.core.logging import get_logger
from inferkit.core.session import InferenceSession
from inferkit.core.tensor import Tensor
from inferkit.generation.kv_cache import CacheNaming, KVCache

logger = get_logger("inferkit.generation")


@dataclass(frozen=True)
class ForwardResult:
    """Logits of the last position, float32 (vocab_size,)."""
    logits: np.ndarray

    @property
    def vocab_size(self) -> int:
        return int(self.logits.shape[0])


class GenerativeSession(ABC):
    """prefill / decode interface shared by decoder-only and encoder-decoder models."""

    @abstractmethod
    def prefill(self, token_ids: Sequence[int]) -> ForwardResult:
        ...

    @abstractmethod
    def decode(self, token_id: int) -> ForwardResult:
        ...

    @abstractmethod
    def cache_sequence_length(self) -> int:
        ...

    @abstractmethod
    def reset_cache(self):
        ...

    @abstractmethod
    def close(self):
        ...

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def last_position_logits(outputs: Mapping[str, Tensor], name: str = "logits") -> np.ndarray:
    """(1, seq, vocab) logits → (vocab,) of the last position."""
    logits = outputs.get(name)
    if logits is None:
        raise InferenceError(f"Model output missing required tensor '{name}'")
    return logits.slice(0, 0).slice(0, -1).to_floats()


def row(values: Sequence[int]) -> Tensor:
    """int64 [1, len] tensor."""
    return Tensor.from_longs(np.asarray(values, dtype=np.int64), [1, len(values)])


def ones_row(length: int) -> Tensor:
    return Tensor.from_longs(np.ones(length, dtype=np.int64), [1, length])


class DecoderOnlySession(GenerativeSession):
    """
    Decoder-only transformer (GPT-2, Llama, SmolLM, Qwen, ...).

    Inputs:  input_ids, attention_mask, position_ids, past_key_values.{i}.key/value
    Outputs: logits, present.{i}.key/value

    Layer count, head count and head dim are read from the model:
    heads = shape[1] and head_dim = shape[3] of past_key_values.0.key,
    layers = number of past_key_values.{i}.key inputs.
    """

    def __init__(self, session: InferenceSession, naming: Optional[CacheNaming] = None):
        self.session = session
        naming = naming or CacheNaming.decoder_only()

        input_names = set(session.input_names())
        num_layers = naming.count_layers(input_names)
        if num_layers == 0:
            raise InferenceError(
                f"Model has no '{naming.past_key.format(layer=0)}' inputs; "
                "it was not exported with a KV cache"
            )

        cache_shape = session.input_shape(naming.past_key.format(layer=0))
        if len(cache_shape) != 4:
            raise InferenceError(f"Expected 4-D cache input, got shape {list(cache_shape)}")
        self.num_heads = int(cache_shape[1])
        self.head_dim = int(cache_shape[3])
        if self.num_heads <= 0 or self.head_dim <= 0:
            raise InferenceError(
                f"Cache input has dynamic head geometry {list(cache_shape)}; "
                "heads and head_dim must be static"
            )

        self.num_layers = num_layers
        self.uses_position_ids = "position_ids" in input_names
        self.cache = KVCache(num_layers, naming)

        logger.debug(
            f"Decoder-only session: {num_layers} layers, "
            f"{self.num_heads} heads, head_dim={self.head_dim}"
        )

    def prefill(self, token_ids: Sequence[int]) -> ForwardResult:
        n = len(token_ids)
        if n == 0:
            raise ValueError("prefill() needs at least one token")

        inputs: Dict[str, Tensor] = {
            "input_ids": row(token_ids),
            "attention_mask": ones_row(n),
        }
        if self.uses_position_ids:
            inputs["position_ids"] = row(range(n))
        inputs.update(self.cache.placeholder_inputs(self.num_heads, self.head_dim))

        outputs = self.session.run(inputs)
        logits = last_position_logits(outputs)
        self.cache.replace_self_attention(outputs, n)
        return ForwardResult(logits)

    def decode(self, token_id: int) -> ForwardResult:
        if self.cache.is_empty:
            raise SessionStateError("decode() called before prefill()")

        seq = self.cache.sequence_length
        inputs: Dict[str, Tensor] = {
            "input_ids": row([token_id]),
            "attention_mask": ones_row(seq + 1),
        }
        if self.uses_position_ids:
            inputs["position_ids"] = row([seq])
        inputs.update(self.cache.self_attention_inputs())

        outputs = self.session.run(inputs)
        logits = last_position_logits(outputs)
        self.cache.replace_self_attention(outputs, seq + 1)
        return ForwardResult(logits)

    def cache_sequence_length(self) -> int:
        return self.cache.sequence_length

    def reset_cache(self):
        self.cache.clear()

    def close(self):
        self.cache.clear()
        self.session.close()
