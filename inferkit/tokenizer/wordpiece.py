"""
inferkit :: WordPiece Tokenizer

BERT-family tokenization:
  1. basic tokenize: lowercase, strip, split on whitespace and punctuation
  2. greedy longest-prefix WordPiece with "##" continuation pieces
  3. [CLS] A [SEP] (B [SEP]) with segment ids, optional right padding

INL - 2025
"""

import unicodedata
from typing import Dict, List, Mapping, Optional

from inferkit.core.exceptions import ModelSourceError, TokenizerConfigError
from inferkit.core.logging import get_logger
from inferkit.tokenizer.base import EncodedInput, Tokenizer, require_vocab

logger = get_logger("inferkit.tokenizer")

SUBWORD_PREFIX = "##"


def _is_punctuation(ch: str) -> bool:
    return unicodedata.category(ch).startswith("P")


def basic_tokenize(text: str, lowercase: bool = True) -> List[str]:
    """Split into words; every punctuation character is its own word."""
    if lowercase:
        text = text.lower()
    tokens: List[str] = []
    current: List[str] = []
    for ch in text.strip():
        if ch.isspace():
            if current:
                tokens.append("".join(current))
                current = []
        elif _is_punctuation(ch):
            if current:
                tokens.append("".join(current))
                current = []
            tokens.append(ch)
        else:
            current.append(ch)
    if current:
        tokens.append("".join(current))
    return tokens


class WordPieceTokenizer(Tokenizer):
    """
    WordPiece tokenizer.

    A word that cannot be fully covered by vocabulary pieces (or is longer
    than max_input_chars_per_word) becomes a single [UNK].
    """

    def __init__(
        self,
        vocab: Mapping[str, int],
        lowercase: bool = True,
        max_length: int = 512,
        pad_to_max_length: bool = False,
        cls_token: str = "[CLS]",
        sep_token: str = "[SEP]",
        unk_token: str = "[UNK]",
        max_input_chars_per_word: int = 100,
    ):
        self.vocab: Dict[str, int] = require_vocab(vocab, "WordPiece")
        if max_length < 1:
            raise TokenizerConfigError(f"max_length must be >= 1, got {max_length}")

        missing = [t for t in (cls_token, sep_token, unk_token) if t not in self.vocab]
        if missing:
            raise TokenizerConfigError(f"WordPiece vocabulary lacks special tokens: {missing}")

        self.lowercase = lowercase
        self.default_max_length = max_length
        self.pad_to_max_length = pad_to_max_length
        self.cls_id = self.vocab[cls_token]
        self.sep_id = self.vocab[sep_token]
        self.unk_id = self.vocab[unk_token]
        self.max_input_chars_per_word = max_input_chars_per_word

    @classmethod
    def from_vocab_file(cls, path: str, **kwargs) -> "WordPieceTokenizer":
        """vocab.txt: one token per line, id = line number."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                lines = f.read().splitlines()
        except OSError as e:
            raise ModelSourceError(f"Failed to load vocabulary from {path}: {e}") from e

        vocab: Dict[str, int] = {}
        for i, line in enumerate(lines):
            token = line.strip()
            if token:
                vocab[token] = i
        logger.info(f"WordPiece vocabulary loaded: {len(vocab)} tokens from {path}")
        return cls(vocab, **kwargs)

    # -----------------------------------------------------------------
    # Encoding
    # -----------------------------------------------------------------

    def _encode(self, text: str, max_length: int) -> EncodedInput:
        ids = [self.cls_id] + self.tokenize_to_ids(text) + [self.sep_id]
        if len(ids) > max_length:
            ids = ids[:max_length - 1] + [self.sep_id]
        return EncodedInput.from_ids(ids, max_length, pad=self.pad_to_max_length)

    def encode_pair(self, text_a: str, text_b: str, max_length: Optional[int] = None) -> EncodedInput:
        """
        [CLS] A [SEP] B [SEP].

        Longest-first truncation: the longer segment loses a token until
        both fit (ties shorten A). Sentinels are never truncated, so
        max_length must leave room for all three.
        """
        if max_length is None:
            max_length = self.default_max_length
        if max_length < 3:
            raise ValueError(f"max_length must be >= 3 for a sentence pair, got {max_length}")

        ids_a = self.tokenize_to_ids(text_a)
        ids_b = self.tokenize_to_ids(text_b)

        available = max_length - 3
        len_a, len_b = len(ids_a), len(ids_b)
        while len_a + len_b > available:
            if len_b > len_a:
                len_b -= 1
            else:
                len_a -= 1

        ids = [self.cls_id] + ids_a[:len_a] + [self.sep_id] + ids_b[:len_b] + [self.sep_id]
        segment_b_start = len_a + 2
        types = [0] * segment_b_start + [1] * (len(ids) - segment_b_start)
        return EncodedInput.from_ids(
            ids, max_length, pad=self.pad_to_max_length, token_type_ids=types,
        )

    def tokenize_to_ids(self, text: str) -> List[int]:
        ids: List[int] = []
        for word in basic_tokenize(text, self.lowercase):
            ids.extend(self._word_piece(word))
        return ids

    def _word_piece(self, word: str) -> List[int]:
        if len(word) > self.max_input_chars_per_word:
            return [self.unk_id]

        ids: List[int] = []
        start = 0
        while start < len(word):
            end = len(word)
            piece_id = None
            while start < end:
                candidate = word[start:end]
                if start > 0:
                    candidate = SUBWORD_PREFIX + candidate
                piece_id = self.vocab.get(candidate)
                if piece_id is not None:
                    break
                end -= 1
            if piece_id is None:
                return [self.unk_id]
            ids.append(piece_id)
            start = end
        return ids

    @property
    def vocab_size(self) -> int:
        return len(self.vocab)
