"""
inferkit :: Tokenizer Base

Shared pieces of the tokenizer family:
  - EncodedInput: ids / attention mask / token type ids (int64, equal length)
  - Tokenizer / TokenDecoder: the interfaces every variant implements
  - StreamDecoder: per-generation incremental decoder (byte reassembly)
  - added-token splitting and <0xNN> byte-fallback helpers

Tokenizers are immutable after construction; anything stateful
(streaming decode) lives in a separate object created per use.

INL - 2025
"""

import codecs
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from inferkit.core.exceptions import TokenizerConfigError


BYTE_TOKEN_PATTERN = re.compile(r"^<0x([0-9A-Fa-f]{2})>$")


@dataclass(frozen=True, eq=False)
class EncodedInput:
    """
    Result of tokenization.

    input_ids:      token ids (padding = 0)
    attention_mask: 1 = real token, 0 = padding
    token_type_ids: segment id, all zero unless sentence-pair encoding
    """
    input_ids: np.ndarray
    attention_mask: np.ndarray
    token_type_ids: np.ndarray

    def __post_init__(self):
        arrays = []
        for name in ("input_ids", "attention_mask", "token_type_ids"):
            arr = np.array(getattr(self, name), dtype=np.int64).reshape(-1)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)
            arrays.append(arr)
        lengths = {a.size for a in arrays}
        if len(lengths) != 1:
            raise ValueError(
                f"EncodedInput arrays differ in length: ids={arrays[0].size}, "
                f"mask={arrays[1].size}, types={arrays[2].size}"
            )

    def __len__(self) -> int:
        return int(self.input_ids.size)

    @staticmethod
    def from_ids(
        ids: Sequence[int],
        max_length: Optional[int] = None,
        pad: bool = False,
        token_type_ids: Optional[Sequence[int]] = None,
    ) -> "EncodedInput":
        """Build from already-truncated ids, right-padding with 0 when `pad` is set."""
        length = len(ids)
        total = max_length if pad and max_length is not None and max_length > length else length
        input_ids = np.zeros(total, dtype=np.int64)
        input_ids[:length] = ids
        mask = np.zeros(total, dtype=np.int64)
        mask[:length] = 1
        types = np.zeros(total, dtype=np.int64)
        if token_type_ids is not None:
            types[:length] = token_type_ids
        return EncodedInput(input_ids, mask, types)


class Tokenizer(ABC):
    """Text → EncodedInput."""

    default_max_length: int = 512

    def encode(self, text: str, max_length: Optional[int] = None) -> EncodedInput:
        if max_length is None:
            max_length = self.default_max_length
        if max_length < 1:
            raise ValueError(f"max_length must be >= 1, got {max_length}")
        return self._encode(text, max_length)

    def encode_pair(self, text_a: str, text_b: str, max_length: Optional[int] = None) -> EncodedInput:
        raise NotImplementedError(f"{type(self).__name__} does not support sentence pairs")

    @abstractmethod
    def _encode(self, text: str, max_length: int) -> EncodedInput:
        ...


class TokenDecoder(ABC):
    """Token ids → text."""

    @abstractmethod
    def decode(self, token_ids: Iterable[int]) -> str:
        ...

    @abstractmethod
    def stream_decoder(self) -> "StreamDecoder":
        """Fresh incremental decoder for one generation."""


class StreamDecoder:
    """
    Incremental decoder.

    Text pieces are returned immediately; raw bytes (byte-fallback tokens,
    byte-level BPE symbols) are held until they form complete UTF-8
    characters. A text piece forces out any pending incomplete bytes.
    """

    def __init__(self, piece_for_id):
        # piece_for_id(token_id) -> (text or None, bytes or None)
        self._piece_for_id = piece_for_id
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def step(self, token_id: int) -> str:
        text, raw = self._piece_for_id(int(token_id))
        if raw is not None:
            return self._utf8.decode(raw)
        if text is None:
            return ""
        return self.flush() + text

    def flush(self) -> str:
        out = self._utf8.decode(b"", final=True)
        self._utf8.reset()
        return out


# =========================================================================
# Added tokens
# =========================================================================

def compile_added_tokens(tokens: Iterable[str]) -> Optional["re.Pattern"]:
    """Alternation of literal tokens, longest first so overlapping tokens match greedily."""
    unique = sorted(set(t for t in tokens if t), key=lambda t: (-len(t), t))
    if not unique:
        return None
    return re.compile("|".join(re.escape(t) for t in unique))


def split_on_added_tokens(
    text: str,
    pattern: Optional["re.Pattern"],
) -> Iterator[Tuple[str, bool]]:
    """
    Yield (piece, is_added_token) in order.

    Text between added tokens is yielded only when non-empty.
    """
    if pattern is None:
        if text:
            yield text, False
        return
    last_end = 0
    for match in pattern.finditer(text):
        if match.start() > last_end:
            yield text[last_end:match.start()], False
        yield match.group(), True
        last_end = match.end()
    if last_end < len(text):
        yield text[last_end:], False


# =========================================================================
# Byte fallback
# =========================================================================

def byte_token(value: int) -> str:
    return f"<0x{value:02X}>"


def build_byte_fallback(vocab: Mapping[str, int]) -> List[int]:
    """ids of <0x00>..<0xFF>, -1 where the vocabulary lacks one."""
    return [vocab.get(byte_token(b), -1) for b in range(256)]


def parse_byte_token(token: str) -> Optional[int]:
    m = BYTE_TOKEN_PATTERN.match(token)
    return int(m.group(1), 16) if m else None


def encode_byte_fallback(
    text: str,
    byte_ids: Sequence[int],
    unk_id: Optional[int],
    out: List[int],
):
    """
    Encode `text` one UTF-8 byte at a time through <0xNN> tokens.

    When any byte lacks a token, the whole piece becomes unk_id
    (or is dropped if the vocabulary has no unknown token).
    """
    data = text.encode("utf-8")
    ids = [byte_ids[b] for b in data]
    if all(i >= 0 for i in ids):
        out.extend(ids)
    elif unk_id is not None:
        out.append(unk_id)


def invert_vocab(vocab: Mapping[str, int]) -> Dict[int, str]:
    reverse: Dict[int, str] = {}
    for token, idx in vocab.items():
        reverse[idx] = token
    return reverse


def require_vocab(vocab: Optional[Mapping[str, int]], kind: str) -> Dict[str, int]:
    if not vocab:
        raise TokenizerConfigError(f"{kind} tokenizer requires a non-empty vocabulary")
    return dict(vocab)


# =========================================================================
# BPE merge loop
# =========================================================================

def bpe_merge(symbols: List[str], ranks: Mapping[Tuple[str, str], int]) -> List[str]:
    """
    Standard BPE merge loop.

    Repeatedly pick the adjacent pair with the lowest rank and merge every
    occurrence of it, left to right, until no ranked pair remains.
    """
    word = list(symbols)
    while len(word) > 1:
        best_pair = None
        best_rank = None
        for pair in zip(word, word[1:]):
            rank = ranks.get(pair)
            if rank is not None and (best_rank is None or rank < best_rank):
                best_rank = rank
                best_pair = pair
        if best_pair is None:
            break

        first, second = best_pair
        merged: List[str] = []
        i = 0
        while i < len(word):
            if i < len(word) - 1 and word[i] == first and word[i + 1] == second:
                merged.append(first + second)
                i += 2
            else:
                merged.append(word[i])
                i += 1
        word = merged
    return word
