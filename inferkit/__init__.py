"""
inferkit: Tokenization and incremental generation on top of ONNX Runtime.

The philosophy: the runtime does the math, we do the glue.

  Tokenizers:  WordPiece, byte-level BPE, SentencePiece BPE / Unigram
  Generation:  prefill / decode sessions with an explicit KV cache
  Streaming:   stop-sequence aware text forwarding
  Kernels:     softmax, top-k, NMS, CTC (numpy, stateless)

INL - 2025
"""

__version__ = "0.1.0"
