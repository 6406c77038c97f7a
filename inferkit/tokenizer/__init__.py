"""
inferkit :: Tokenizer

Text ↔ token id conversion.
  - wordpiece: BERT-family WordPiece
  - bpe: byte-level BPE (GPT-2, CLIP)
  - sentencepiece: SentencePiece BPE and Unigram with byte fallback
  - json_parser: build any of the above from tokenizer.json
"""

from inferkit.tokenizer.base import EncodedInput, Tokenizer, TokenDecoder, StreamDecoder
from inferkit.tokenizer.wordpiece import WordPieceTokenizer
from inferkit.tokenizer.bpe import BpeConfig, BpeTokenizer, GPT2_PATTERN, CLIP_PATTERN
from inferkit.tokenizer.sentencepiece import (
    SentencePieceConfig, SentencePieceBpeTokenizer, UnigramTokenizer,
)
from inferkit.tokenizer.json_parser import (
    parse_bpe, parse_sentencepiece_bpe, parse_unigram, parse_wordpiece, load_tokenizer,
)
