"""
inferkit :: CLI

Usage:
    inferkit encode --tokenizer tokenizer.json "some text" ["pair text"]
    inferkit decode --tokenizer tokenizer.json 101 7592 102
    inferkit generate --model-dir ./smollm2 "Tell me a joke" [--max-new-tokens 64]

Global flags:
    --log-level DEBUG|INFO|WARNING|ERROR
    --json-logs
    --log-file PATH          (also append JSON lines to PATH)

INL - 2025
"""

import argparse
import json
import os
import sys
from typing import List, Optional

from inferkit.core.exceptions import InferkitError
from inferkit.core.logging import setup_logging

# Tried in order when --eos-id is not given
DEFAULT_EOS_TOKENS = ("</s>", "<|endoftext|>", "<|im_end|>", "<eos>", "<|eot_id|>", "[SEP]")


def load_any_tokenizer(path: str, max_length: Optional[int] = None):
    """tokenizer.json (any model type) or a WordPiece vocab.txt."""
    from inferkit.tokenizer.json_parser import load_tokenizer
    from inferkit.tokenizer.wordpiece import WordPieceTokenizer

    if path.endswith(".txt"):
        kwargs = {"max_length": max_length} if max_length else {}
        return WordPieceTokenizer.from_vocab_file(path, **kwargs)
    return load_tokenizer(path)


def cmd_encode(args):
    """Print ids / mask / type ids as JSON."""
    tokenizer = load_any_tokenizer(args.tokenizer, args.max_length)
    if args.text_pair is not None:
        encoded = tokenizer.encode_pair(args.text, args.text_pair, args.max_length)
    else:
        encoded = tokenizer.encode(args.text, args.max_length)
    print(json.dumps({
        "input_ids": encoded.input_ids.tolist(),
        "attention_mask": encoded.attention_mask.tolist(),
        "token_type_ids": encoded.token_type_ids.tolist(),
    }))


def cmd_decode(args):
    """Print the text of a list of token ids."""
    from inferkit.tokenizer.base import TokenDecoder

    tokenizer = load_any_tokenizer(args.tokenizer)
    if not isinstance(tokenizer, TokenDecoder):
        raise InferkitError(f"{type(tokenizer).__name__} cannot decode token ids")
    print(tokenizer.decode(args.ids))


def _resolve_eos_ids(tokenizer, explicit: List[int]) -> List[int]:
    if explicit:
        return explicit
    lookup = getattr(tokenizer, "token_to_id", None)
    if lookup is not None:
        for token in DEFAULT_EOS_TOKENS:
            token_id = lookup(token)
            if token_id is not None:
                return [token_id]
    raise InferkitError("Could not find an EOS token in the vocabulary; pass --eos-id")


def cmd_generate(args):
    """Run a decoder-only ONNX model (model.onnx + tokenizer.json) and stream its output."""
    from inferkit.core.chat_template import load_chat_template
    from inferkit.core.sampling import SamplingParams
    from inferkit.core.session import OnnxInferenceSession
    from inferkit.generation.engine import GenerationEngine
    from inferkit.generation.session import DecoderOnlySession
    from inferkit.tokenizer.json_parser import load_tokenizer

    tokenizer = load_tokenizer(os.path.join(args.model_dir, "tokenizer.json"))
    eos_ids = _resolve_eos_ids(tokenizer, args.eos_id)
    chat_template = None if args.no_chat_template else load_chat_template(args.model_dir)

    params = SamplingParams(
        temperature=args.temperature,
        top_k=args.top_k,
        top_p=args.top_p,
        max_tokens=args.max_new_tokens,
        stop_sequences=args.stop,
        seed=args.seed,
    )

    onnx_session = OnnxInferenceSession(
        os.path.join(args.model_dir, args.model_file),
        providers=args.provider or None,
    )
    with GenerationEngine(
        DecoderOnlySession(onnx_session),
        tokenizer,
        tokenizer,
        eos_ids,
        params,
        chat_template=chat_template,
    ) as engine:
        result = engine.generate(
            args.prompt,
            on_token=lambda text: print(text, end="", flush=True),
        )
    print()
    print(
        f"[{result.prompt_tokens} prompt tokens, {result.generated_tokens} generated, "
        f"{result.elapsed_ms:.0f} ms, finish={result.finish_reason}]",
        file=sys.stderr,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inferkit",
        description="Tokenization and KV-cached generation for ONNX models",
    )
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", default=None, help="Also append JSON log lines to this file")
    parser.add_argument("--json-logs", action="store_true", help="Log one JSON object per line")
    sub = parser.add_subparsers(dest="command")

    # encode
    p_encode = sub.add_parser("encode", help="Tokenize text")
    p_encode.add_argument("--tokenizer", required=True, help="tokenizer.json or vocab.txt")
    p_encode.add_argument("--max-length", type=int, default=None)
    p_encode.add_argument("text")
    p_encode.add_argument("text_pair", nargs="?", default=None)
    p_encode.set_defaults(func=cmd_encode)

    # decode
    p_decode = sub.add_parser("decode", help="Turn token ids back into text")
    p_decode.add_argument("--tokenizer", required=True, help="tokenizer.json")
    p_decode.add_argument("ids", type=int, nargs="+")
    p_decode.set_defaults(func=cmd_decode)

    # generate
    p_gen = sub.add_parser("generate", help="Generate text with a decoder-only ONNX model")
    p_gen.add_argument("--model-dir", required=True)
    p_gen.add_argument("--model-file", default="model.onnx")
    p_gen.add_argument("--max-new-tokens", type=int, default=256)
    p_gen.add_argument("--temperature", type=float, default=0.0)
    p_gen.add_argument("--top-k", type=int, default=0)
    p_gen.add_argument("--top-p", type=float, default=1.0)
    p_gen.add_argument("--seed", type=int, default=None)
    p_gen.add_argument("--eos-id", type=int, action="append", default=[])
    p_gen.add_argument("--stop", action="append", default=[], help="Stop sequence (repeatable)")
    p_gen.add_argument("--provider", action="append", default=[],
                       help="ONNX Runtime execution provider (repeatable)")
    p_gen.add_argument("--no-chat-template", action="store_true")
    p_gen.add_argument("prompt")
    p_gen.set_defaults(func=cmd_generate)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    setup_logging(level=args.log_level, json_output=args.json_logs, log_file=args.log_file)
    try:
        args.func(args)
    except (InferkitError, ValueError, NotImplementedError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
