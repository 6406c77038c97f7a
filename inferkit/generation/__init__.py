"""
inferkit :: Generation

Autoregressive decoding with a KV cache.
  - kv_cache: per-layer self / cross attention cache
  - session: GenerativeSession, DecoderOnlySession
  - encoder_decoder: EncoderDecoderSession
  - streamer: stop-sequence aware text streaming
  - engine: prompt → text generation loop
"""

from inferkit.generation.kv_cache import CacheNaming, KVCache, LayerCache
from inferkit.generation.session import ForwardResult, GenerativeSession, DecoderOnlySession
from inferkit.generation.encoder_decoder import EncoderDecoderSession
from inferkit.generation.streamer import TokenStreamer
from inferkit.generation.engine import GenerationEngine, GenerationResult
