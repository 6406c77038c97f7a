"""
inferkit :: Test Byte-level BPE

Tests for the GPT-2 / CLIP tokenizer:
  - byte → unicode table
  - merge ranks and the merge loop
  - CLIP framing: lowercase, </w>, BOS/EOS, padding to max_length
  - truncation keeps BOS and EOS
  - added tokens, unknown symbols
  - decode and incremental (streaming) decode of multi-byte text
  - vocab.json + merges.txt loading

Run:
    python -m pytest tests/test_bpe.py -v

INL - 2025
"""

import json
import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from inferkit.core.exceptions import ModelSourceError, TokenizerConfigError
from inferkit.tokenizer.base import bpe_merge
from inferkit.tokenizer.bpe import (
    BYTE_DECODER, BYTE_ENCODER, BpeConfig, BpeTokenizer, build_merge_ranks, bytes_to_unicode,
)


# =====================================================================
# Fixtures
# =====================================================================

CLIP_VOCAB = {
    "hell": 10,
    "o</w>": 3,
    "world</w>": 13,
    "<|startoftext|>": 100,
    "<|endoftext|>": 101,
}
CLIP_MERGES = [
    "h e", "he l", "hel l",
    "w o", "wo r", "wor l", "worl d</w>",
]
BOS, EOS = 100, 101

# GPT-2 style: "Ġ" is the mapped space byte
GPT2_VOCAB = {
    "hi": 0,
    "Ġthere": 1,
    "Ã": 5,
    "©": 6,
    "<|im_end|>": 7,
    "<unk>": 8,
}
GPT2_MERGES = ["h i", "Ġ t", "Ġt h", "Ġth e", "Ġthe r", "Ġther e"]


@pytest.fixture
def clip():
    return BpeTokenizer(CLIP_VOCAB, CLIP_MERGES, BpeConfig.clip(max_length=10))


@pytest.fixture
def gpt2():
    return BpeTokenizer(GPT2_VOCAB, GPT2_MERGES, BpeConfig(added_tokens=["<|im_end|>"]))


# =====================================================================
# 1. Byte table and merges
# =====================================================================

class TestByteTable:

    def test_covers_every_byte(self):
        table = bytes_to_unicode()
        assert len(table) == 256
        assert len(set(table.values())) == 256

    def test_printable_bytes_map_to_themselves(self):
        assert BYTE_ENCODER[ord("a")] == "a"
        assert BYTE_ENCODER[ord("!")] == "!"

    def test_space_is_shifted(self):
        assert BYTE_ENCODER[ord(" ")] == "Ġ"
        assert BYTE_DECODER["Ġ"] == ord(" ")

    def test_no_whitespace_symbols(self):
        assert not any(symbol.isspace() for symbol in BYTE_ENCODER.values())


class TestMerges:

    def test_ranks_from_strings_and_pairs(self):
        ranks = build_merge_ranks(["a b", ("ab", "c")])
        assert ranks == {("a", "b"): 0, ("ab", "c"): 1}

    def test_duplicate_keeps_first_rank(self):
        ranks = build_merge_ranks(["a b", "c d", "a b"])
        assert ranks[("a", "b")] == 0

    def test_malformed_merge(self):
        with pytest.raises(TokenizerConfigError):
            build_merge_ranks(["abc"])

    def test_lowest_rank_applied_first(self):
        ranks = build_merge_ranks(["b c", "a b"])
        # "b c" outranks "a b", so "a" is left alone
        assert bpe_merge(list("abc"), ranks) == ["a", "bc"]

    def test_all_occurrences_merged(self):
        ranks = build_merge_ranks(["a a"])
        assert bpe_merge(list("aaaaa"), ranks) == ["aa", "aa", "a"]

    def test_no_merges(self):
        assert bpe_merge(list("xyz"), {}) == ["x", "y", "z"]


# =====================================================================
# 2. CLIP encoding
# =====================================================================

class TestClipEncode:

    def test_hello_padded(self, clip):
        enc = clip.encode("hello")
        assert enc.input_ids.tolist() == [BOS, 10, 3, EOS, 0, 0, 0, 0, 0, 0]
        assert enc.attention_mask.tolist() == [1, 1, 1, 1, 0, 0, 0, 0, 0, 0]
        assert enc.token_type_ids.tolist() == [0] * 10

    def test_two_words(self, clip):
        assert clip.tokenize("hello world") == [10, 3, 13]

    def test_case_and_whitespace_invariant(self, clip):
        a = clip.encode("hello world")
        b = clip.encode("  HELLO \t\n World ")
        assert a.input_ids.tolist() == b.input_ids.tolist()

    def test_truncation_keeps_bos_and_eos(self, clip):
        enc = clip.encode("hello world", max_length=3)
        assert enc.input_ids.tolist() == [BOS, 10, EOS]
        assert enc.attention_mask.tolist() == [1, 1, 1]

    def test_length_never_exceeds_max(self, clip):
        for max_length in (1, 2, 4, 7):
            assert len(clip.encode("hello world hello world", max_length=max_length)) == max_length

    def test_empty_text(self, clip):
        enc = clip.encode("", max_length=4)
        assert enc.input_ids.tolist() == [BOS, EOS, 0, 0]

    def test_unknown_symbols_dropped_without_unk(self, clip):
        assert clip.tokenize("zzz") == []

    def test_decode(self, clip):
        assert clip.decode([BOS, 10, 3, 13, EOS, 0]) == "hello world"


# =====================================================================
# 3. GPT-2 style encoding and decoding
# =====================================================================

class TestGpt2Encode:

    def test_space_prefixed_word(self, gpt2):
        enc = gpt2.encode("hi there")
        assert enc.input_ids.tolist() == [0, 1]
        assert enc.attention_mask.tolist() == [1, 1]

    def test_multibyte_character(self, gpt2):
        # é = C3 A9
        assert gpt2.tokenize("é") == [5, 6]

    def test_added_token_atomic(self, gpt2):
        assert gpt2.tokenize("hi<|im_end|>") == [0, 7]

    def test_unknown_symbol_maps_to_unk(self):
        tok = BpeTokenizer(GPT2_VOCAB, GPT2_MERGES, BpeConfig(unk_token="<unk>"))
        assert tok.tokenize("zz") == [8, 8]

    def test_no_padding_by_default(self, gpt2):
        assert len(gpt2.encode("hi", max_length=16)) == 1

    def test_decode_round_trip(self, gpt2):
        assert gpt2.decode(gpt2.tokenize("hi there")) == "hi there"

    def test_decode_skips_added_tokens(self, gpt2):
        assert gpt2.decode([0, 7, 1]) == "hi there"

    def test_decode_incomplete_utf8(self, gpt2):
        assert gpt2.decode([5]) == "�"

    def test_stream_decoder_waits_for_full_character(self, gpt2):
        stream = gpt2.stream_decoder()
        assert stream.step(0) == "hi"
        assert stream.step(5) == ""
        assert stream.step(6) == "é"
        assert stream.step(1) == " there"
        assert stream.flush() == ""

    def test_stream_decoders_are_independent(self, gpt2):
        a = gpt2.stream_decoder()
        b = gpt2.stream_decoder()
        assert a.step(5) == ""
        assert b.step(0) == "hi"
        assert a.step(6) == "é"

    def test_stream_flush_replaces_dangling_bytes(self, gpt2):
        stream = gpt2.stream_decoder()
        assert stream.step(5) == ""
        assert stream.flush() == "�"


# =====================================================================
# 4. Configuration and loading
# =====================================================================

class TestBpeConfig:

    def test_missing_bos(self):
        with pytest.raises(TokenizerConfigError):
            BpeTokenizer(GPT2_VOCAB, GPT2_MERGES, BpeConfig(bos_token="<s>"))

    def test_missing_added_token(self):
        with pytest.raises(TokenizerConfigError):
            BpeTokenizer(GPT2_VOCAB, GPT2_MERGES, BpeConfig(added_tokens=["<pad>"]))

    def test_empty_vocab(self):
        with pytest.raises(TokenizerConfigError):
            BpeTokenizer({}, [])

    def test_invalid_max_length(self):
        with pytest.raises(TokenizerConfigError):
            BpeConfig(max_length=0)

    def test_clip_defaults(self):
        config = BpeConfig.clip()
        assert config.max_length == 77
        assert config.lowercase
        assert config.end_of_word_marker == "</w>"


class TestBpeLoading:

    def test_from_files(self, tmp_path):
        vocab_path = tmp_path / "vocab.json"
        merges_path = tmp_path / "merges.txt"
        vocab_path.write_text(json.dumps(GPT2_VOCAB), encoding="utf-8")
        merges_path.write_text("#version: 0.2\n" + "\n".join(GPT2_MERGES) + "\n", encoding="utf-8")

        tok = BpeTokenizer.from_files(str(vocab_path), str(merges_path))
        assert tok.vocab_size == len(GPT2_VOCAB)
        assert tok.tokenize("hi there") == [0, 1]
        assert tok.token_to_id("hi") == 0
        assert tok.token_to_id("missing") is None

    def test_missing_vocab_file(self, tmp_path):
        merges_path = tmp_path / "merges.txt"
        merges_path.write_text("", encoding="utf-8")
        with pytest.raises(ModelSourceError):
            BpeTokenizer.from_files(str(tmp_path / "vocab.json"), str(merges_path))

    def test_vocab_not_an_object(self, tmp_path):
        vocab_path = tmp_path / "vocab.json"
        merges_path = tmp_path / "merges.txt"
        vocab_path.write_text("[1, 2]", encoding="utf-8")
        merges_path.write_text("", encoding="utf-8")
        with pytest.raises(ModelSourceError):
            BpeTokenizer.from_files(str(vocab_path), str(merges_path))
