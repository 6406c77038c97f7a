"""
inferkit :: Generation Engine

Autoregressive text generation on top of a GenerativeSession.

Control flow:
    prompt  = chat_template.format(text)          (optional)
    ids     = tokenizer.encode(prompt)
    logits  = session.prefill(ids)
    loop up to max_tokens:
        token = sample(logits)                    greedy or categorical
        stop on EOS
        text  = stream_decoder.step(token)        UTF-8 safe fragments
        streamer.accept(text)                     stop-sequence detection
        logits = session.decode(token)

INL - 2025
"""

import itertools
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from inferkit.core.chat_template import ChatTemplate
from inferkit.core.logging import RequestLogger, get_logger
from inferkit.core.sampling import SamplingParams, build_processors, make_generator, sample_token
from inferkit.generation.session import GenerativeSession
from inferkit.generation.streamer import TokenStreamer
from inferkit.tokenizer.base import TokenDecoder, Tokenizer

logger = get_logger("inferkit.generation")


@dataclass
class GenerationResult:
    """Result of one generate() call."""
    text: str
    prompt_tokens: int
    generated_tokens: int
    elapsed_ms: float
    finish_reason: str = "length"  # "eos", "stop", "length"
    token_ids: List[int] = field(default_factory=list)


class GenerationEngine:
    """
    Text-in, text-out generation.

    The engine owns the session: close() (or leaving a `with` block)
    closes it. Not thread-safe; one engine per concurrent stream.
    """

    def __init__(
        self,
        session: GenerativeSession,
        tokenizer: Tokenizer,
        decoder: TokenDecoder,
        eos_token_ids: Iterable[int],
        params: Optional[SamplingParams] = None,
        chat_template: Optional[ChatTemplate] = None,
        append_eos_to_input: bool = False,
    ):
        if session is None:
            raise ValueError("session is required")
        if tokenizer is None:
            raise ValueError("tokenizer is required")
        if decoder is None:
            raise ValueError("decoder is required")

        self.eos_token_ids: List[int] = []
        for token_id in eos_token_ids:
            if int(token_id) not in self.eos_token_ids:
                self.eos_token_ids.append(int(token_id))
        if not self.eos_token_ids:
            raise ValueError("At least one EOS token id is required")

        self.session = session
        self.tokenizer = tokenizer
        self.decoder = decoder
        self.params = params or SamplingParams()
        self.chat_template = chat_template
        self.append_eos_to_input = append_eos_to_input
        self._request_ids = itertools.count()

    def encode_prompt(self, prompt: str) -> List[int]:
        """Prompt text → ids fed to prefill (padding removed)."""
        text = self.chat_template.format(prompt) if self.chat_template is not None else prompt
        encoded = self.tokenizer.encode(text)
        ids = [int(t) for t, m in zip(encoded.input_ids, encoded.attention_mask) if m == 1]
        if self.append_eos_to_input:
            ids.append(self.eos_token_ids[0])
        return ids

    def generate(
        self,
        prompt: str,
        on_token: Optional[Callable[[str], None]] = None,
        params: Optional[SamplingParams] = None,
    ) -> GenerationResult:
        """
        Generate a completion for `prompt`.

        Args:
            prompt: user text (formatted through the chat template if set)
            on_token: called with each text fragment as it becomes final
            params: per-call override of the engine's sampling parameters

        Returns:
            GenerationResult with the streamed text (stop sequence excluded)
        """
        params = params or self.params
        log = RequestLogger(next(self._request_ids), logger)

        input_ids = self.encode_prompt(prompt)
        self.session.reset_cache()
        result = self.session.prefill(input_ids)
        log.prefill_done(len(input_ids))

        streamer = TokenStreamer(params.stop_sequences, on_token)
        stream = self.decoder.stream_decoder()
        generator = make_generator(params.seed)
        processors = build_processors(params)

        generated: List[int] = []
        finish_reason = "length"
        while len(generated) < params.max_tokens:
            token_id = sample_token(result.logits, params, generated, generator, processors)
            if token_id in self.eos_token_ids:
                finish_reason = "eos"
                break

            log.token_sampled()
            generated.append(token_id)
            streamer.accept(stream.step(token_id))
            if streamer.is_stopped:
                finish_reason = "stop"
                break

            if len(generated) < params.max_tokens:
                result = self.session.decode(token_id)

        if not streamer.is_stopped:
            streamer.accept(stream.flush())
            streamer.flush()
            if streamer.is_stopped:
                finish_reason = "stop"

        elapsed = log.finish(len(input_ids), len(generated), finish_reason)
        return GenerationResult(
            text=streamer.text,
            prompt_tokens=len(input_ids),
            generated_tokens=len(generated),
            elapsed_ms=elapsed,
            finish_reason=finish_reason,
            token_ids=generated,
        )

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
