"""
inferkit :: Byte-level BPE Tokenizer

GPT-2 / CLIP style tokenization:
  text → added-token split → normalize → regex chunks
       → UTF-8 bytes mapped to printable unicode → BPE merges → ids

Decoding reverses the byte mapping; the end-of-word marker (CLIP "</w>")
becomes a space.

INL - 2025
"""

import json
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from inferkit.core.exceptions import ModelSourceError, TokenizerConfigError
from inferkit.core.logging import get_logger
from inferkit.tokenizer.base import (
    EncodedInput, StreamDecoder, TokenDecoder, Tokenizer,
    bpe_merge, compile_added_tokens, invert_vocab, require_vocab, split_on_added_tokens,
)

logger = get_logger("inferkit.tokenizer")


# Python's re has no \p{..} classes:
#   letters      [^\W\d_]
#   numbers      \d
#   other        [^\s\w] or "_"
GPT2_PATTERN = re.compile(
    r"""'s|'t|'re|'ve|'m|'ll|'d| ?[^\W\d_]+| ?\d+| ?(?:[^\s\w]|_)+|\s+(?!\S)|\s+"""
)

CLIP_PATTERN = re.compile(
    r"""<\|startoftext\|>|<\|endoftext\|>|'s|'t|'re|'ve|'m|'ll|'d|[^\W\d_]+|\d|(?:[^\s\w]|_)+""",
    re.IGNORECASE,
)

_WHITESPACE = re.compile(r"\s+")


def bytes_to_unicode() -> Dict[int, str]:
    """
    GPT-2 byte → unicode table.

    Printable bytes map to themselves; the rest are shifted to 256+n so
    every byte has a visible, non-whitespace symbol.
    """
    printable = (
        list(range(ord("!"), ord("~") + 1))
        + list(range(ord("¡"), ord("¬") + 1))
        + list(range(ord("®"), ord("ÿ") + 1))
    )
    table = {b: chr(b) for b in printable}
    n = 0
    for b in range(256):
        if b not in table:
            table[b] = chr(256 + n)
            n += 1
    return table


BYTE_ENCODER = bytes_to_unicode()
BYTE_DECODER = {v: k for k, v in BYTE_ENCODER.items()}


@dataclass
class BpeConfig:
    """
    Byte-level BPE options.

    normalize_whitespace strips the text and collapses whitespace runs to a
    single space before chunking. bos/eos/unk/added tokens must exist in
    the vocabulary.
    """
    pattern: Union[str, "re.Pattern"] = GPT2_PATTERN
    lowercase: bool = False
    normalize_whitespace: bool = True
    end_of_word_marker: Optional[str] = None
    bos_token: Optional[str] = None
    eos_token: Optional[str] = None
    unk_token: Optional[str] = None
    added_tokens: List[str] = field(default_factory=list)
    pad_to_max_length: bool = False
    max_length: int = 512

    def __post_init__(self):
        if self.max_length < 1:
            raise TokenizerConfigError(f"max_length must be >= 1, got {self.max_length}")
        if self.end_of_word_marker == "":
            raise TokenizerConfigError("end_of_word_marker must be non-empty when set")

    @classmethod
    def clip(cls, **overrides) -> "BpeConfig":
        """CLIP text encoder settings (lowercase, </w>, 77 tokens, padded)."""
        values = dict(
            pattern=CLIP_PATTERN,
            lowercase=True,
            end_of_word_marker="</w>",
            bos_token="<|startoftext|>",
            eos_token="<|endoftext|>",
            pad_to_max_length=True,
            max_length=77,
        )
        values.update(overrides)
        return cls(**values)


MergeSpec = Union[str, Sequence[str]]


def build_merge_ranks(merges: Iterable[MergeSpec]) -> Dict[Tuple[str, str], int]:
    """Merges as "a b" strings or (a, b) pairs; rank = position."""
    ranks: Dict[Tuple[str, str], int] = {}
    for rank, merge in enumerate(merges):
        if isinstance(merge, str):
            parts = merge.split(" ", 1)
        else:
            parts = list(merge)
        if len(parts) != 2:
            raise TokenizerConfigError(f"Malformed merge at rank {rank}: {merge!r}")
        pair = (parts[0], parts[1])
        if pair not in ranks:
            ranks[pair] = rank
    return ranks


class BpeTokenizer(Tokenizer, TokenDecoder):
    """
    Byte-level BPE tokenizer with decoding.

    Input:  text (str)
    Output: EncodedInput (BOS ... EOS, optionally padded to max_length)
    """

    def __init__(
        self,
        vocab: Mapping[str, int],
        merges: Iterable[MergeSpec],
        config: Optional[BpeConfig] = None,
    ):
        self.config = config or BpeConfig()
        self.vocab: Dict[str, int] = require_vocab(vocab, "BPE")
        self.ranks = build_merge_ranks(merges)
        self.reverse_vocab = invert_vocab(self.vocab)
        self.default_max_length = self.config.max_length
        self._pattern = re.compile(self.config.pattern)

        self.bos_id = self._lookup_special(self.config.bos_token, "bos_token")
        self.eos_id = self._lookup_special(self.config.eos_token, "eos_token")
        self.unk_id = self._lookup_special(self.config.unk_token, "unk_token")

        self.added_tokens: Dict[str, int] = {}
        for token in self.config.added_tokens:
            self.added_tokens[token] = self._lookup_special(token, "added token")
        self._added_pattern = compile_added_tokens(self.added_tokens)

        self.special_ids = set(self.added_tokens.values())
        for special in (self.bos_id, self.eos_id):
            if special is not None:
                self.special_ids.add(special)

    def _lookup_special(self, token: Optional[str], what: str) -> Optional[int]:
        if token is None:
            return None
        if token not in self.vocab:
            raise TokenizerConfigError(f"{what} {token!r} is not in the vocabulary")
        return self.vocab[token]

    # -----------------------------------------------------------------
    # Loading
    # -----------------------------------------------------------------

    @classmethod
    def from_files(
        cls,
        vocab_json: str,
        merges_txt: str,
        config: Optional[BpeConfig] = None,
    ) -> "BpeTokenizer":
        """Load vocab.json + merges.txt (a leading #version line is skipped)."""
        try:
            with open(vocab_json, "r", encoding="utf-8") as f:
                vocab = json.load(f)
        except (OSError, ValueError) as e:
            raise ModelSourceError(f"Failed to load BPE vocabulary {vocab_json}: {e}") from e
        if not isinstance(vocab, dict):
            raise ModelSourceError(f"BPE vocabulary {vocab_json} is not a JSON object")

        try:
            with open(merges_txt, "r", encoding="utf-8") as f:
                lines = f.read().splitlines()
        except OSError as e:
            raise ModelSourceError(f"Failed to load BPE merges {merges_txt}: {e}") from e

        merges = []
        for line in lines:
            line = line.strip()
            if not line or line.startswith("#version"):
                continue
            if len(line.split(" ", 1)) == 2:
                merges.append(line)

        logger.info(f"BPE tokenizer loaded: {len(vocab)} tokens, {len(merges)} merges")
        return cls(vocab, merges, config)

    @classmethod
    def from_tokenizer_json(cls, path: str, config: Optional[BpeConfig] = None) -> "BpeTokenizer":
        from inferkit.tokenizer.json_parser import parse_bpe
        return parse_bpe(path, config)

    # -----------------------------------------------------------------
    # Encoding
    # -----------------------------------------------------------------

    def _encode(self, text: str, max_length: int) -> EncodedInput:
        ids = self.tokenize(text)
        if self.bos_id is not None:
            ids.insert(0, self.bos_id)
        if self.eos_id is not None:
            ids.append(self.eos_id)

        if len(ids) > max_length:
            # BOS stays at 0, EOS at the last kept position
            if self.eos_id is not None:
                ids = ids[:max_length - 1] + [self.eos_id]
            else:
                ids = ids[:max_length]

        return EncodedInput.from_ids(ids, max_length, pad=self.config.pad_to_max_length)

    def tokenize(self, text: str) -> List[int]:
        """Raw token ids, no BOS/EOS, no truncation."""
        if self.config.normalize_whitespace:
            text = _WHITESPACE.sub(" ", text.strip())

        ids: List[int] = []
        for piece, is_added in split_on_added_tokens(text, self._added_pattern):
            if is_added:
                ids.append(self.added_tokens[piece])
                continue
            if self.config.lowercase:
                piece = piece.lower()
            for match in self._pattern.finditer(piece):
                chunk = match.group()
                if chunk:
                    self._encode_chunk(chunk, ids)
        return ids

    def _encode_chunk(self, chunk: str, out: List[int]):
        symbols = [BYTE_ENCODER[b] for b in chunk.encode("utf-8")]
        if self.config.end_of_word_marker:
            symbols[-1] = symbols[-1] + self.config.end_of_word_marker

        for symbol in bpe_merge(symbols, self.ranks):
            token_id = self.vocab.get(symbol)
            if token_id is None:
                token_id = self.unk_id
            if token_id is not None:
                out.append(token_id)

    # -----------------------------------------------------------------
    # Decoding
    # -----------------------------------------------------------------

    def _token_bytes(self, token: str) -> bytes:
        marker = self.config.end_of_word_marker
        parts = token.split(marker) if marker else [token]
        return b" ".join(
            bytes(BYTE_DECODER[c] for c in part if c in BYTE_DECODER)
            for part in parts
        )

    def _piece_for_id(self, token_id: int):
        if token_id in self.special_ids:
            return None, None
        token = self.reverse_vocab.get(token_id)
        if token is None:
            return None, None
        return None, self._token_bytes(token)

    def decode(self, token_ids: Iterable[int]) -> str:
        """ids → text. BOS/EOS/added tokens and unknown ids are skipped."""
        data = bytearray()
        for token_id in token_ids:
            _, raw = self._piece_for_id(int(token_id))
            if raw is not None:
                data.extend(raw)
        text = data.decode("utf-8", errors="replace")
        if self.config.end_of_word_marker:
            text = text.rstrip(" ")
        return text

    def stream_decoder(self) -> StreamDecoder:
        return StreamDecoder(self._piece_for_id)

    # -----------------------------------------------------------------
    # Lookups
    # -----------------------------------------------------------------

    def token_to_id(self, token: str) -> Optional[int]:
        return self.vocab.get(token)

    @property
    def vocab_size(self) -> int:
        return len(self.vocab)
