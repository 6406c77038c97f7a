"""
inferkit :: tokenizer.json Parser

Builds tokenizers from HuggingFace tokenizer.json descriptions.

Fields read:
  model.type            "BPE" | "Unigram" | "WordPiece"
  model.vocab           {token: id}  (Unigram: [[piece, log_prob], ...])
  model.merges          ["a b", ...] or [["a", "b"], ...]
  model.unk_token / model.unk_id
  model.end_of_word_suffix  CLIP "</w>" (selects the CLIP pre-tokenizer regex)
  added_tokens[]        {content, id, special}; only special ones are split
                        out of the input and skipped on decode
  post_processor        TemplateProcessing / RobertaProcessing / BertProcessing
                        (byte-level BPE BOS / EOS)
  truncation.max_length byte-level BPE default max_length
  normalizer / pre_tokenizer / decoder
                        Lowercase, ByteLevel, Metaspace (add_prefix_space /
                        prepend_scheme), Prepend

INL - 2025
"""

import dataclasses
import json
from typing import Any, Dict, Iterator, List, Optional, Tuple

from inferkit.core.exceptions import ModelSourceError
from inferkit.core.logging import get_logger
from inferkit.tokenizer.bpe import CLIP_PATTERN, GPT2_PATTERN, BpeConfig, BpeTokenizer
from inferkit.tokenizer.sentencepiece import (
    SPACE_PREFIX, SentencePieceBpeTokenizer, SentencePieceConfig, UnigramTokenizer,
)
from inferkit.tokenizer.wordpiece import WordPieceTokenizer

logger = get_logger("inferkit.tokenizer")


# =========================================================================
# Raw JSON access
# =========================================================================

def read_tokenizer_json(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            root = json.load(f)
    except (OSError, ValueError) as e:
        raise ModelSourceError(f"Failed to parse tokenizer.json {path}: {e}") from e
    if not isinstance(root, dict):
        raise ModelSourceError(f"tokenizer.json {path} is not a JSON object")
    return root


def _model_section(root: Dict[str, Any], path: str) -> Dict[str, Any]:
    model = root.get("model")
    if not isinstance(model, dict):
        raise ModelSourceError(f"tokenizer.json missing 'model' section: {path}")
    if "vocab" not in model:
        raise ModelSourceError(f"tokenizer.json missing 'model.vocab': {path}")
    return model


def _vocab_object(model: Dict[str, Any], path: str) -> Dict[str, int]:
    vocab = model["vocab"]
    if not isinstance(vocab, dict):
        raise ModelSourceError(f"'model.vocab' must be an object in {path}")
    return {token: int(idx) for token, idx in vocab.items()}


def _merges(model: Dict[str, Any]) -> List[Tuple[str, str]]:
    merges: List[Tuple[str, str]] = []
    for merge in model.get("merges") or []:
        if isinstance(merge, str):
            parts = merge.split(" ", 1)
            if len(parts) == 2:
                merges.append((parts[0], parts[1]))
        elif isinstance(merge, list) and len(merge) == 2:
            merges.append((merge[0], merge[1]))
    return merges


def _added_tokens(root: Dict[str, Any], special_only: bool = True) -> List[Tuple[str, int]]:
    """added_tokens entries as (content, id). Entries without special: true are skipped unless asked for."""
    tokens: List[Tuple[str, int]] = []
    for entry in root.get("added_tokens") or []:
        content = entry.get("content")
        token_id = entry.get("id")
        if special_only and entry.get("special") is not True:
            continue
        if isinstance(content, str) and isinstance(token_id, int):
            tokens.append((content, token_id))
    return tokens


def _merge_added_tokens(vocab: Dict[str, int], root: Dict[str, Any]) -> List[str]:
    """
    Register every added token in the vocabulary; returns the special ones.

    Only special tokens are split out of the input and dropped on decode.
    Non-special ones stay ordinary vocabulary entries and decode as text.
    """
    for content, token_id in _added_tokens(root, special_only=False):
        vocab.setdefault(content, token_id)
    return [content for content, _ in _added_tokens(root)]


def _framing_tokens(root: Dict[str, Any], vocab: Dict[str, int]) -> Tuple[Optional[str], Optional[str]]:
    """
    (bos, eos) the post_processor wraps a single sequence in.

    TemplateProcessing: special tokens before / after the "A" sequence.
    RobertaProcessing / BertProcessing: cls / sep.
    Tokens missing from the vocabulary are dropped.
    """
    bos = eos = None
    post = root.get("post_processor")
    templates = list(_components(post, "TemplateProcessing"))
    if templates:
        seen_sequence = False
        for item in templates[0].get("single") or []:
            if not isinstance(item, dict):
                continue
            if "Sequence" in item:
                seen_sequence = True
            elif isinstance(item.get("SpecialToken"), dict):
                token = item["SpecialToken"].get("id")
                if seen_sequence:
                    eos = token
                elif bos is None:
                    bos = token
    else:
        for type_name in ("RobertaProcessing", "BertProcessing"):
            proc = next(_components(post, type_name), None)
            if proc is not None:
                cls, sep = proc.get("cls"), proc.get("sep")
                bos = cls[0] if isinstance(cls, list) and cls else None
                eos = sep[0] if isinstance(sep, list) and sep else None
                break

    def known(token):
        return token if isinstance(token, str) and token in vocab else None

    return known(bos), known(eos)


def _truncation_length(root: Dict[str, Any]) -> Optional[int]:
    truncation = root.get("truncation")
    if isinstance(truncation, dict) and isinstance(truncation.get("max_length"), int):
        return truncation["max_length"]
    return None


def _components(node: Any, type_name: str) -> Iterator[Dict[str, Any]]:
    """All nested pipeline components (normalizers, pre-tokenizers, ...) of a type."""
    if isinstance(node, dict):
        if node.get("type") == type_name:
            yield node
        for value in node.values():
            yield from _components(value, type_name)
    elif isinstance(node, list):
        for item in node:
            yield from _components(item, type_name)


def _has_component(root: Dict[str, Any], type_name: str, *sections: str) -> bool:
    return any(
        True for section in sections for _ in _components(root.get(section), type_name)
    )


def _add_prefix_space(root: Dict[str, Any]) -> bool:
    for meta in _components(root.get("pre_tokenizer"), "Metaspace"):
        scheme = meta.get("prepend_scheme")
        if scheme is not None:
            return scheme != "never"
        return bool(meta.get("add_prefix_space", True))
    for prepend in _components(root.get("normalizer"), "Prepend"):
        return prepend.get("prepend") == SPACE_PREFIX
    return True


def _unk_id(model: Dict[str, Any], vocab: Dict[str, int]) -> Optional[int]:
    unk_token = model.get("unk_token")
    if isinstance(unk_token, str):
        return vocab.get(unk_token)
    return None


def _sentencepiece_config(
    root: Dict[str, Any],
    unk_id: Optional[int],
    config: Optional[SentencePieceConfig],
) -> SentencePieceConfig:
    if config is not None:
        return config
    return SentencePieceConfig(add_prefix_space=_add_prefix_space(root), unk_id=unk_id)


# =========================================================================
# Builders
# =========================================================================

def _build_bpe(root, path, config: Optional[BpeConfig] = None) -> BpeTokenizer:
    model = _model_section(root, path)
    vocab = _vocab_object(model, path)
    added = _merge_added_tokens(vocab, root)

    if config is None:
        unk = model.get("unk_token")
        end_of_word = model.get("end_of_word_suffix") or None
        bos, eos = _framing_tokens(root, vocab)
        config = BpeConfig(
            # CLIP-style files: words carry "</w>" instead of a leading space symbol
            pattern=CLIP_PATTERN if end_of_word else GPT2_PATTERN,
            lowercase=_has_component(root, "Lowercase", "normalizer"),
            end_of_word_marker=end_of_word,
            bos_token=bos,
            eos_token=eos,
            unk_token=unk if isinstance(unk, str) and unk in vocab else None,
            added_tokens=added,
            max_length=_truncation_length(root) or BpeConfig.max_length,
        )
    elif not config.added_tokens:
        config = dataclasses.replace(config, added_tokens=added)

    return BpeTokenizer(vocab, _merges(model), config)


def _build_sentencepiece_bpe(root, path, config=None) -> SentencePieceBpeTokenizer:
    model = _model_section(root, path)
    vocab = _vocab_object(model, path)
    added = _merge_added_tokens(vocab, root)
    config = _sentencepiece_config(root, _unk_id(model, vocab), config)
    return SentencePieceBpeTokenizer(vocab, _merges(model), added, config)


def _build_unigram(root, path, config=None) -> UnigramTokenizer:
    model = _model_section(root, path)
    raw = model["vocab"]
    if not isinstance(raw, list):
        raise ModelSourceError(f"Unigram 'model.vocab' must be a list of [piece, score] in {path}")

    pieces: List[Tuple[str, float]] = []
    for i, entry in enumerate(raw):
        if not isinstance(entry, list) or len(entry) != 2:
            raise ModelSourceError(f"Malformed Unigram vocab entry {i} in {path}: {entry!r}")
        pieces.append((str(entry[0]), float(entry[1])))

    known = {piece for piece, _ in pieces}
    added: List[str] = []
    for content, token_id in _added_tokens(root):
        if content in known:
            added.append(content)
        else:
            logger.warning(f"Added token {content!r} (id {token_id}) has no Unigram piece, ignored")

    unk_id = model.get("unk_id")
    if config is None:
        config = SentencePieceConfig(
            add_prefix_space=_add_prefix_space(root),
            unk_id=unk_id if isinstance(unk_id, int) else None,
        )
    return UnigramTokenizer(pieces, added, config)


def _build_wordpiece(root, path, **kwargs) -> WordPieceTokenizer:
    model = _model_section(root, path)
    vocab = _vocab_object(model, path)

    lowercase = True
    for bert in _components(root.get("normalizer"), "BertNormalizer"):
        lowercase = bool(bert.get("lowercase", True))
    kwargs.setdefault("lowercase", lowercase)
    if isinstance(model.get("unk_token"), str):
        kwargs.setdefault("unk_token", model["unk_token"])
    if isinstance(model.get("max_input_chars_per_word"), int):
        kwargs.setdefault("max_input_chars_per_word", model["max_input_chars_per_word"])
    return WordPieceTokenizer(vocab, **kwargs)


# =========================================================================
# Public API
# =========================================================================

def parse_bpe(path: str, config: Optional[BpeConfig] = None) -> BpeTokenizer:
    """Byte-level BPE (GPT-2 / CLIP) from tokenizer.json."""
    return _build_bpe(read_tokenizer_json(path), path, config)


def parse_sentencepiece_bpe(
    path: str,
    config: Optional[SentencePieceConfig] = None,
) -> SentencePieceBpeTokenizer:
    """SentencePiece BPE (Llama / Gemma / Marian) from tokenizer.json."""
    return _build_sentencepiece_bpe(read_tokenizer_json(path), path, config)


def parse_unigram(path: str, config: Optional[SentencePieceConfig] = None) -> UnigramTokenizer:
    """Unigram (T5 / Flan-T5) from tokenizer.json."""
    return _build_unigram(read_tokenizer_json(path), path, config)


def parse_wordpiece(path: str, **kwargs) -> WordPieceTokenizer:
    """WordPiece (BERT family) from tokenizer.json."""
    return _build_wordpiece(read_tokenizer_json(path), path, **kwargs)


def load_tokenizer(path: str):
    """
    Build whichever tokenizer a tokenizer.json describes.

    BPE models with a ByteLevel pre-tokenizer or decoder are byte-level;
    other BPE models are SentencePiece BPE.
    """
    root = read_tokenizer_json(path)
    model = _model_section(root, path)

    model_type = model.get("type")
    if model_type is None:
        if isinstance(model["vocab"], list):
            model_type = "Unigram"
        elif "merges" in model:
            model_type = "BPE"
        else:
            model_type = "WordPiece"

    if model_type == "WordPiece":
        tokenizer = _build_wordpiece(root, path)
    elif model_type == "Unigram":
        tokenizer = _build_unigram(root, path)
    elif model_type == "BPE":
        if _has_component(root, "ByteLevel", "pre_tokenizer", "decoder"):
            tokenizer = _build_bpe(root, path)
        else:
            tokenizer = _build_sentencepiece_bpe(root, path)
    else:
        raise ModelSourceError(f"Unsupported tokenizer model type {model_type!r} in {path}")

    logger.info(f"Tokenizer loaded: {type(tokenizer).__name__} from {path}")
    return tokenizer
