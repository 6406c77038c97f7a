"""
inferkit :: Test WordPiece

Tests for the BERT-family tokenizer:
  - basic tokenization (case, whitespace, punctuation)
  - greedy longest-prefix pieces and [UNK]
  - [CLS]/[SEP] framing and truncation
  - sentence pairs: token types and longest-first truncation
  - padding, vocab.txt loading, configuration errors

Run:
    python -m pytest tests/test_wordpiece.py -v

INL - 2025
"""

import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from inferkit.core.exceptions import ModelSourceError, TokenizerConfigError
from inferkit.tokenizer.wordpiece import WordPieceTokenizer, basic_tokenize

VOCAB_TOKENS = [
    "[PAD]", "[UNK]", "[CLS]", "[SEP]",
    "hello", "world", "test", "##ing", "un", "##aff", "##able", ",", "!", "a", "b", "c",
]
VOCAB = {token: i for i, token in enumerate(VOCAB_TOKENS)}

PAD, UNK, CLS, SEP = 0, 1, 2, 3
HELLO, WORLD, TEST, ING = 4, 5, 6, 7


@pytest.fixture
def tokenizer():
    return WordPieceTokenizer(VOCAB)


class TestBasicTokenize:

    def test_lowercase_and_whitespace(self):
        assert basic_tokenize("  Hello\tWORLD \n") == ["hello", "world"]

    def test_punctuation_split(self):
        assert basic_tokenize("hello,world!") == ["hello", ",", "world", "!"]

    def test_unicode_punctuation(self):
        assert basic_tokenize("«hi»") == ["«", "hi", "»"]

    def test_keep_case(self):
        assert basic_tokenize("Hello", lowercase=False) == ["Hello"]


class TestWordPieceEncode:

    def test_subword_pieces(self, tokenizer):
        enc = tokenizer.encode("testing")
        assert enc.input_ids.tolist() == [CLS, TEST, ING, SEP]
        assert enc.attention_mask.tolist() == [1, 1, 1, 1]
        assert enc.token_type_ids.tolist() == [0, 0, 0, 0]

    def test_hello_world(self, tokenizer):
        enc = tokenizer.encode("hello world")
        assert enc.input_ids.tolist() == [CLS, HELLO, WORLD, SEP]
        assert enc.token_type_ids.tolist() == [0, 0, 0, 0]
        assert enc.attention_mask.tolist() == [1, 1, 1, 1]

    def test_three_pieces(self, tokenizer):
        assert tokenizer.encode("unaffable").input_ids.tolist() == [CLS, 8, 9, 10, SEP]

    def test_unknown_word_is_single_unk(self, tokenizer):
        # "testx" matches "test" but the remainder has no piece
        assert tokenizer.encode("testx hello").input_ids.tolist() == [CLS, UNK, HELLO, SEP]

    def test_overlong_word_is_unk(self):
        tok = WordPieceTokenizer(VOCAB, max_input_chars_per_word=3)
        assert tok.encode("hello").input_ids.tolist() == [CLS, UNK, SEP]

    def test_empty_text(self, tokenizer):
        assert tokenizer.encode("").input_ids.tolist() == [CLS, SEP]

    def test_truncation_keeps_sep(self, tokenizer):
        enc = tokenizer.encode("hello world hello world", max_length=4)
        assert enc.input_ids.tolist() == [CLS, HELLO, WORLD, SEP]

    def test_padding(self):
        tok = WordPieceTokenizer(VOCAB, pad_to_max_length=True)
        enc = tok.encode("hello", max_length=6)
        assert enc.input_ids.tolist() == [CLS, HELLO, SEP, PAD, PAD, PAD]
        assert enc.attention_mask.tolist() == [1, 1, 1, 0, 0, 0]
        assert enc.token_type_ids.tolist() == [0] * 6

    def test_invalid_max_length(self, tokenizer):
        with pytest.raises(ValueError):
            tokenizer.encode("hello", max_length=0)


class TestWordPiecePairs:

    def test_pair_type_ids(self, tokenizer):
        enc = tokenizer.encode_pair("hello", "world testing")
        assert enc.input_ids.tolist() == [CLS, HELLO, SEP, WORLD, TEST, ING, SEP]
        assert enc.token_type_ids.tolist() == [0, 0, 0, 1, 1, 1, 1]
        assert enc.attention_mask.tolist() == [1] * 7

    def test_longest_first_truncation(self, tokenizer):
        # A = 1 token, B = 4 tokens, budget 7 - 3 = 4 → B loses one
        enc = tokenizer.encode_pair("hello", "a b c hello", max_length=7)
        assert enc.input_ids.tolist() == [CLS, HELLO, SEP, 13, 14, 15, SEP]

    def test_tie_truncates_first_segment(self, tokenizer):
        # A = 2, B = 2, budget 6 - 3 = 3: on a tie A shrinks
        enc = tokenizer.encode_pair("a b", "c hello", max_length=6)
        assert enc.input_ids.tolist() == [CLS, 13, SEP, 15, HELLO, SEP]
        assert enc.token_type_ids.tolist() == [0, 0, 0, 1, 1, 1]

    def test_pair_padding(self):
        tok = WordPieceTokenizer(VOCAB, pad_to_max_length=True)
        enc = tok.encode_pair("hello", "world", max_length=7)
        assert enc.input_ids.tolist() == [CLS, HELLO, SEP, WORLD, SEP, PAD, PAD]
        assert enc.token_type_ids.tolist() == [0, 0, 0, 1, 1, 0, 0]
        assert enc.attention_mask.tolist() == [1, 1, 1, 1, 1, 0, 0]

    def test_pair_needs_room_for_sentinels(self, tokenizer):
        for max_length in (1, 2):
            with pytest.raises(ValueError):
                tokenizer.encode_pair("hello", "world", max_length=max_length)

    def test_pair_only_sentinels(self, tokenizer):
        enc = tokenizer.encode_pair("hello", "world", max_length=3)
        assert enc.input_ids.tolist() == [CLS, SEP, SEP]
        assert enc.token_type_ids.tolist() == [0, 0, 1]


class TestWordPieceLoading:

    def test_from_vocab_file(self, tmp_path):
        path = tmp_path / "vocab.txt"
        path.write_text("\n".join(VOCAB_TOKENS) + "\n", encoding="utf-8")
        tok = WordPieceTokenizer.from_vocab_file(str(path))
        assert tok.vocab_size == len(VOCAB_TOKENS)
        assert tok.encode("testing").input_ids.tolist() == [CLS, TEST, ING, SEP]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ModelSourceError):
            WordPieceTokenizer.from_vocab_file(str(tmp_path / "nope.txt"))

    def test_missing_special_tokens(self):
        with pytest.raises(TokenizerConfigError):
            WordPieceTokenizer({"hello": 0, "[UNK]": 1})

    def test_empty_vocab(self):
        with pytest.raises(TokenizerConfigError):
            WordPieceTokenizer({})

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            WordPieceTokenizer({"[CLS]": 0})
