"""
inferkit :: SentencePiece Tokenizers

SentencePiece-style tokenizers read from tokenizer.json (T5, Marian,
Gemma, Llama, ...):
  - SentencePieceBpeTokenizer: merge loop over code points
  - UnigramTokenizer: Viterbi search maximising summed piece log-probs

Shared behaviour:
  - added tokens are matched atomically on the raw text
  - ' ' → '▁', the first non-empty segment gets a leading '▁'
  - characters without a piece fall back to <0xNN> byte tokens
  - decode: '▁' → ' ', byte runs reassembled as UTF-8, one leading space dropped

INL - 2025
"""

from abc import abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from inferkit.core.exceptions import TokenizerConfigError
from inferkit.core.logging import get_logger
from inferkit.tokenizer.base import (
    EncodedInput, StreamDecoder, TokenDecoder, Tokenizer,
    bpe_merge, build_byte_fallback, compile_added_tokens, encode_byte_fallback,
    invert_vocab, parse_byte_token, require_vocab, split_on_added_tokens,
)
from inferkit.tokenizer.bpe import MergeSpec, build_merge_ranks

logger = get_logger("inferkit.tokenizer")

SPACE_PREFIX = "▁"

# Score charged per character that no piece covers
BYTE_FALLBACK_PENALTY = -100.0


@dataclass
class SentencePieceConfig:
    """SentencePiece options. unk_id is used when a byte token is missing."""
    add_prefix_space: bool = True
    max_length: int = 8192
    unk_id: Optional[int] = None

    def __post_init__(self):
        if self.max_length < 1:
            raise TokenizerConfigError(f"max_length must be >= 1, got {self.max_length}")


class _SentencePieceTokenizer(Tokenizer, TokenDecoder):
    """Normalisation, added tokens, byte fallback and decoding."""

    def __init__(
        self,
        vocab: Mapping[str, int],
        added_tokens: Iterable[str] = (),
        config: Optional[SentencePieceConfig] = None,
    ):
        self.config = config or SentencePieceConfig()
        self.vocab: Dict[str, int] = require_vocab(vocab, type(self).__name__)
        self.reverse_vocab = invert_vocab(self.vocab)
        self.default_max_length = self.config.max_length

        self.unk_id = self.config.unk_id
        if self.unk_id is not None and self.unk_id not in self.reverse_vocab:
            raise TokenizerConfigError(f"unk_id {self.unk_id} is not in the vocabulary")

        self.added_tokens: Dict[str, int] = {}
        for token in added_tokens:
            if token not in self.vocab:
                raise TokenizerConfigError(f"added token {token!r} is not in the vocabulary")
            self.added_tokens[token] = self.vocab[token]
        self._added_pattern = compile_added_tokens(self.added_tokens)
        self.special_ids = set(self.added_tokens.values())

        self.byte_fallback_ids = build_byte_fallback(self.vocab)
        self._byte_values: Dict[int, int] = {}
        for token, token_id in self.vocab.items():
            value = parse_byte_token(token)
            if value is not None:
                self._byte_values[token_id] = value

    # -----------------------------------------------------------------
    # Encoding
    # -----------------------------------------------------------------

    def _encode(self, text: str, max_length: int) -> EncodedInput:
        ids = self.tokenize(text)[:max_length]
        return EncodedInput.from_ids(ids)

    def tokenize(self, text: str) -> List[int]:
        ids: List[int] = []
        first = True
        for piece, is_added in split_on_added_tokens(text, self._added_pattern):
            if is_added:
                ids.append(self.added_tokens[piece])
                continue
            self._segment(self._normalize(piece, first), ids)
            first = False
        return ids

    def _normalize(self, text: str, first: bool) -> str:
        text = text.replace(" ", SPACE_PREFIX)
        if first and self.config.add_prefix_space:
            text = SPACE_PREFIX + text
        return text

    @abstractmethod
    def _segment(self, text: str, out: List[int]):
        """Append the ids of one normalized span to out."""

    def _byte_fallback(self, text: str, out: List[int]):
        encode_byte_fallback(text, self.byte_fallback_ids, self.unk_id, out)

    # -----------------------------------------------------------------
    # Decoding
    # -----------------------------------------------------------------

    def decode(self, token_ids: Iterable[int]) -> str:
        """ids → text. Added tokens and unknown ids are skipped."""
        parts: List[str] = []
        pending = bytearray()

        def flush():
            if pending:
                parts.append(pending.decode("utf-8", errors="replace"))
                pending.clear()

        for token_id in token_ids:
            token_id = int(token_id)
            if token_id in self.special_ids or token_id not in self.reverse_vocab:
                flush()
                continue
            value = self._byte_values.get(token_id)
            if value is not None:
                pending.append(value)
            else:
                flush()
                parts.append(self.reverse_vocab[token_id])
        flush()

        text = "".join(parts).replace(SPACE_PREFIX, " ")
        if self.config.add_prefix_space and text.startswith(" "):
            text = text[1:]
        return text

    def _piece_for_id(self, token_id: int):
        if token_id in self.special_ids:
            return None, None
        token = self.reverse_vocab.get(token_id)
        if token is None:
            return None, None
        value = self._byte_values.get(token_id)
        if value is not None:
            return None, bytes([value])
        return token.replace(SPACE_PREFIX, " "), None

    def stream_decoder(self) -> StreamDecoder:
        """Streaming keeps the leading space of each word piece."""
        return StreamDecoder(self._piece_for_id)

    def token_to_id(self, token: str) -> Optional[int]:
        return self.vocab.get(token)

    @property
    def vocab_size(self) -> int:
        return len(self.vocab)


class SentencePieceBpeTokenizer(_SentencePieceTokenizer):
    """SentencePiece BPE: lowest-rank merges over code points, byte fallback for leftovers."""

    def __init__(
        self,
        vocab: Mapping[str, int],
        merges: Iterable[MergeSpec],
        added_tokens: Iterable[str] = (),
        config: Optional[SentencePieceConfig] = None,
    ):
        super().__init__(vocab, added_tokens, config)
        self.ranks = build_merge_ranks(merges)

    @classmethod
    def from_tokenizer_json(cls, path: str, config: Optional[SentencePieceConfig] = None):
        from inferkit.tokenizer.json_parser import parse_sentencepiece_bpe
        return parse_sentencepiece_bpe(path, config)

    def _segment(self, text: str, out: List[int]):
        if not text:
            return
        for symbol in bpe_merge(list(text), self.ranks):
            token_id = self.vocab.get(symbol)
            if token_id is not None:
                out.append(token_id)
            else:
                self._byte_fallback(symbol, out)


class UnigramTokenizer(_SentencePieceTokenizer):
    """
    Unigram language-model tokenizer.

    pieces: [(piece, log_prob), ...], id = position.

    Segmentation maximises the summed log-probability of the pieces.
    Positions no piece can reach are covered one character at a time
    through byte fallback (BYTE_FALLBACK_PENALTY per character).
    Byte tokens and added tokens never take part in the search.
    """

    def __init__(
        self,
        pieces: Sequence[Tuple[str, float]],
        added_tokens: Iterable[str] = (),
        config: Optional[SentencePieceConfig] = None,
    ):
        vocab: Dict[str, int] = {}
        scores: List[float] = []
        for i, (piece, score) in enumerate(pieces):
            vocab.setdefault(piece, i)
            scores.append(float(score))
        super().__init__(vocab, added_tokens, config)
        self.scores = scores

        self._candidates: Dict[str, int] = {
            piece: token_id
            for piece, token_id in self.vocab.items()
            if token_id not in self._byte_values and piece not in self.added_tokens
        }
        self.max_piece_length = max((len(p) for p in self._candidates), default=0)

    @classmethod
    def from_tokenizer_json(cls, path: str, config: Optional[SentencePieceConfig] = None):
        from inferkit.tokenizer.json_parser import parse_unigram
        return parse_unigram(path, config)

    def _segment(self, text: str, out: List[int]):
        n = len(text)
        if n == 0:
            return

        neg_inf = float("-inf")
        best = [neg_inf] * (n + 1)
        prev = [-1] * (n + 1)
        piece_ids = [-1] * (n + 1)
        best[0] = 0.0

        for end in range(1, n + 1):
            for start in range(max(0, end - self.max_piece_length), end):
                if best[start] == neg_inf:
                    continue
                token_id = self._candidates.get(text[start:end])
                if token_id is None:
                    continue
                score = best[start] + self.scores[token_id]
                if score > best[end]:
                    best[end] = score
                    prev[end] = start
                    piece_ids[end] = token_id

            if best[end] == neg_inf:
                # best[end - 1] is always finite here: position 0 is, and every
                # later position is reached by a piece or by this fallback
                best[end] = best[end - 1] + BYTE_FALLBACK_PENALTY
                prev[end] = end - 1

        path: List[Tuple[int, int, int]] = []
        pos = n
        while pos > 0:
            path.append((prev[pos], pos, piece_ids[pos]))
            pos = prev[pos]

        for start, end, token_id in reversed(path):
            if token_id >= 0:
                out.append(token_id)
            else:
                self._byte_fallback(text[start:end], out)
