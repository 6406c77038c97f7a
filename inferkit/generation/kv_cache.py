"""
inferkit :: KV Cache

Per-layer attention cache for incremental decoding.

Layout:
    layers[i].self_key / self_value    decoder self-attention, replaced every step
    layers[i].cross_key / cross_value  encoder-decoder cross-attention, frozen once set

Tensor names exist only at the inference-session boundary; CacheNaming
holds the templates ("past_key_values.{layer}.key", "present.{layer}.key", ...).

INL - 2025
"""

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

import numpy as np

from inferkit.core.exceptions import InferenceError, SessionStateError
from inferkit.core.tensor import Tensor


@dataclass
class CacheNaming:
    """Tensor-name templates; `{layer}` is the layer index."""
    past_key: str = "past_key_values.{layer}.key"
    past_value: str = "past_key_values.{layer}.value"
    present_key: str = "present.{layer}.key"
    present_value: str = "present.{layer}.value"
    cross_past_key: Optional[str] = None
    cross_past_value: Optional[str] = None
    cross_present_key: Optional[str] = None
    cross_present_value: Optional[str] = None

    @classmethod
    def decoder_only(cls) -> "CacheNaming":
        return cls()

    @classmethod
    def encoder_decoder(cls) -> "CacheNaming":
        return cls(
            past_key="past_key_values.{layer}.decoder.key",
            past_value="past_key_values.{layer}.decoder.value",
            present_key="present.{layer}.decoder.key",
            present_value="present.{layer}.decoder.value",
            cross_past_key="past_key_values.{layer}.encoder.key",
            cross_past_value="past_key_values.{layer}.encoder.value",
            cross_present_key="present.{layer}.encoder.key",
            cross_present_value="present.{layer}.encoder.value",
        )

    @property
    def has_cross_attention(self) -> bool:
        return self.cross_past_key is not None

    def count_layers(self, input_names) -> int:
        """Number of layers = number of inputs matching the past-key template."""
        prefix, _, suffix = self.past_key.partition("{layer}")
        count = 0
        for name in input_names:
            if name.startswith(prefix) and name.endswith(suffix):
                middle = name[len(prefix):len(name) - len(suffix)]
                if middle.isdigit():
                    count += 1
        return count


@dataclass
class LayerCache:
    """Cached attention tensors of one layer."""
    self_key: Optional[Tensor] = None
    self_value: Optional[Tensor] = None
    cross_key: Optional[Tensor] = None
    cross_value: Optional[Tensor] = None


class KVCache:
    """
    Attention cache of a generative session.

    Lifecycle: empty → replace_self_attention() after every forward pass
    → clear(). The cross-attention half is set once by
    freeze_cross_attention() and reused by reference until clear().
    """

    def __init__(self, num_layers: int, naming: Optional[CacheNaming] = None):
        if num_layers < 1:
            raise ValueError(f"num_layers must be >= 1, got {num_layers}")
        self.num_layers = num_layers
        self.naming = naming or CacheNaming()
        self.layers: List[LayerCache] = [LayerCache() for _ in range(num_layers)]
        self.sequence_length = 0
        self.cross_frozen = False

    @property
    def is_empty(self) -> bool:
        return self.sequence_length == 0

    # -----------------------------------------------------------------
    # Self-attention
    # -----------------------------------------------------------------

    def replace_self_attention(self, outputs: Mapping[str, Tensor], sequence_length: int):
        """Take the present.* tensors of a forward pass as the new cache."""
        new_tensors = []
        for layer in range(self.num_layers):
            key = _require_output(outputs, self.naming.present_key.format(layer=layer))
            value = _require_output(outputs, self.naming.present_value.format(layer=layer))
            new_tensors.append((key, value))

        for cache, (key, value) in zip(self.layers, new_tensors):
            cache.self_key = key
            cache.self_value = value
        self.sequence_length = sequence_length

    def self_attention_inputs(self) -> Dict[str, Tensor]:
        """past_key_values.* inputs for the next decode step."""
        if self.is_empty:
            raise SessionStateError("KV cache is empty; run prefill() first")
        inputs: Dict[str, Tensor] = {}
        for layer, cache in enumerate(self.layers):
            inputs[self.naming.past_key.format(layer=layer)] = cache.self_key
            inputs[self.naming.past_value.format(layer=layer)] = cache.self_value
        return inputs

    def placeholder_inputs(self, num_heads: int, head_dim: int) -> Dict[str, Tensor]:
        """Zero-length [1, heads, 0, head_dim] past tensors for a first forward pass."""
        empty = Tensor.from_floats(np.zeros(0, dtype=np.float32), [1, num_heads, 0, head_dim])
        inputs: Dict[str, Tensor] = {}
        for layer in range(self.num_layers):
            inputs[self.naming.past_key.format(layer=layer)] = empty
            inputs[self.naming.past_value.format(layer=layer)] = empty
        return inputs

    # -----------------------------------------------------------------
    # Cross-attention
    # -----------------------------------------------------------------

    def freeze_cross_attention(self, outputs: Mapping[str, Tensor]):
        """Store the encoder-derived cache. Refuses to overwrite a frozen cache."""
        if not self.naming.has_cross_attention:
            raise SessionStateError("Cache naming has no cross-attention templates")
        if self.cross_frozen:
            raise SessionStateError("Cross-attention cache is frozen; clear() before a new prefill")

        new_tensors = []
        for layer in range(self.num_layers):
            key = _require_output(outputs, self.naming.cross_present_key.format(layer=layer))
            value = _require_output(outputs, self.naming.cross_present_value.format(layer=layer))
            new_tensors.append((key, value))

        for cache, (key, value) in zip(self.layers, new_tensors):
            cache.cross_key = key
            cache.cross_value = value
        self.cross_frozen = True

    def cross_attention_inputs(self) -> Dict[str, Tensor]:
        if not self.cross_frozen:
            raise SessionStateError("Cross-attention cache is empty; run prefill() first")
        inputs: Dict[str, Tensor] = {}
        for layer, cache in enumerate(self.layers):
            inputs[self.naming.cross_past_key.format(layer=layer)] = cache.cross_key
            inputs[self.naming.cross_past_value.format(layer=layer)] = cache.cross_value
        return inputs

    def clear(self):
        for cache in self.layers:
            cache.self_key = cache.self_value = None
            cache.cross_key = cache.cross_value = None
        self.sequence_length = 0
        self.cross_frozen = False


def _require_output(outputs: Mapping[str, Tensor], name: str) -> Tensor:
    tensor = outputs.get(name)
    if tensor is None:
        raise InferenceError(f"Model output missing required tensor '{name}'")
    return tensor
