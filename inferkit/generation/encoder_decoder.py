"""
inferkit :: Encoder-Decoder Session

Seq2seq generation (T5, BART, Marian, ...) over three exported graphs:

    encoder             input_ids, attention_mask → last_hidden_state
    decoder             input_ids, encoder_hidden_states, encoder_attention_mask
                        → logits, present.{i}.decoder.*, present.{i}.encoder.*
    decoder_with_past   input_ids, encoder_attention_mask,
                        past_key_values.{i}.decoder.*, past_key_values.{i}.encoder.*
                        → logits, present.{i}.decoder.*

The cross-attention cache depends only on the encoder output: it is
taken from the first decoder pass and the same tensors are fed to every
later step.

INL - 2025
"""

from typing import Dict, List, Optional, Sequence, Tuple

from inferkit.core.exceptions import InferenceError, SessionCloseError, SessionStateError
from inferkit.core.logging import get_logger
from inferkit.core.session import InferenceSession
from inferkit.core.tensor import Tensor
from inferkit.generation.kv_cache import CacheNaming, KVCache
from inferkit.generation.session import (
    ForwardResult, GenerativeSession, last_position_logits, ones_row, row,
)

logger = get_logger("inferkit.generation")


class EncoderDecoderSession(GenerativeSession):
    """
    Encoder-decoder session.

    prefill(source_ids) encodes the source and runs the decoder on the
    decoder start token; the session then holds one decoder position.
    """

    def __init__(
        self,
        encoder: InferenceSession,
        decoder: InferenceSession,
        decoder_with_past: InferenceSession,
        decoder_start_token_id: int,
        naming: Optional[CacheNaming] = None,
    ):
        self.encoder = encoder
        self.decoder = decoder
        self.decoder_with_past = decoder_with_past
        self.decoder_start_token_id = decoder_start_token_id

        naming = naming or CacheNaming.encoder_decoder()
        if not naming.has_cross_attention:
            raise ValueError("Encoder-decoder cache naming needs cross-attention templates")

        num_layers = naming.count_layers(decoder_with_past.input_names())
        if num_layers == 0:
            raise InferenceError(
                f"decoder_with_past has no '{naming.past_key.format(layer=0)}' inputs"
            )
        self.num_layers = num_layers
        self.cache = KVCache(num_layers, naming)
        self.encoder_attention_mask: Optional[Tensor] = None

        logger.debug(f"Encoder-decoder session: {num_layers} decoder layers")

    def prefill(self, token_ids: Sequence[int]) -> ForwardResult:
        src_len = len(token_ids)
        if src_len == 0:
            raise ValueError("prefill() needs at least one source token")

        attention_mask = ones_row(src_len)
        encoder_outputs = self.encoder.run({
            "input_ids": row(token_ids),
            "attention_mask": attention_mask,
        })
        hidden_states = encoder_outputs.get("last_hidden_state")
        if hidden_states is None:
            raise InferenceError("Encoder output missing required tensor 'last_hidden_state'")

        outputs = self.decoder.run({
            "input_ids": row([self.decoder_start_token_id]),
            "encoder_hidden_states": hidden_states,
            "encoder_attention_mask": attention_mask,
        })
        logits = last_position_logits(outputs)

        self.cache.clear()
        self.cache.freeze_cross_attention(outputs)
        self.cache.replace_self_attention(outputs, 1)
        self.encoder_attention_mask = attention_mask
        return ForwardResult(logits)

    def decode(self, token_id: int) -> ForwardResult:
        if self.cache.is_empty:
            raise SessionStateError("decode() called before prefill()")

        inputs: Dict[str, Tensor] = {
            "input_ids": row([token_id]),
            "encoder_attention_mask": self.encoder_attention_mask,
        }
        inputs.update(self.cache.self_attention_inputs())
        inputs.update(self.cache.cross_attention_inputs())

        outputs = self.decoder_with_past.run(inputs)
        logits = last_position_logits(outputs)
        self.cache.replace_self_attention(outputs, self.cache.sequence_length + 1)
        return ForwardResult(logits)

    def cache_sequence_length(self) -> int:
        return self.cache.sequence_length

    def reset_cache(self):
        self.cache.clear()
        self.encoder_attention_mask = None

    def close(self):
        """Close all three sessions; failures are logged and raised together afterwards."""
        self.reset_cache()
        errors: List[Tuple[str, Exception]] = []
        for name, session in (
            ("encoder", self.encoder),
            ("decoder", self.decoder),
            ("decoder_with_past", self.decoder_with_past),
        ):
            try:
                session.close()
            except Exception as e:
                logger.error(f"Failed to close {name} session: {e}", exc_info=True)
                errors.append((name, e))
        if errors:
            raise SessionCloseError(errors) from errors[0][1]
