"""
inferkit :: Test Sampling

Tests for token selection:
  - SamplingParams validation and the greedy check
  - logits processors (temperature, top-k, top-p)
  - greedy / categorical sample_token, seeded reproducibility
  - chat templates (inline, .jinja file, tokenizer_config.json)

Run:
    python -m pytest tests/test_sampling.py -v

INL - 2025
"""

import json
import math
import pytest
import numpy as np
import torch
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from inferkit.core.chat_template import ChatTemplate, load_chat_template
from inferkit.core.logits_processor import (
    TemperatureProcessor, TopKProcessor, TopPProcessor, apply_logits_processors,
)
from inferkit.core.sampling import SamplingParams, build_processors, make_generator, sample_token


# =====================================================================
# 1. SamplingParams
# =====================================================================

class TestSamplingParams:

    def test_defaults_are_greedy(self):
        params = SamplingParams()
        assert params.is_greedy
        assert params.max_tokens == 256
        assert params.stop_sequences == []

    def test_temperature_makes_it_sampled(self):
        assert not SamplingParams(temperature=0.7).is_greedy
        assert not SamplingParams(top_k=5).is_greedy
        assert not SamplingParams(top_p=0.9).is_greedy

    @pytest.mark.parametrize("kwargs", [
        {"temperature": -0.1},
        {"top_k": -1},
        {"top_p": 0.0},
        {"top_p": 1.5},
        {"max_tokens": -1},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            SamplingParams(**kwargs)

    def test_build_processors_order(self):
        procs = build_processors(SamplingParams(temperature=0.5, top_k=10, top_p=0.9))
        assert [type(p) for p in procs] == [TemperatureProcessor, TopKProcessor, TopPProcessor]

    def test_build_processors_greedy(self):
        assert build_processors(SamplingParams()) == []


# =====================================================================
# 2. Logits processors
# =====================================================================

class TestLogitsProcessors:

    def test_temperature(self):
        logits = torch.tensor([2.0, 4.0])
        out = TemperatureProcessor(2.0)(logits, [])
        assert out.tolist() == [1.0, 2.0]
        assert logits.tolist() == [2.0, 4.0]

    def test_temperature_must_be_positive(self):
        with pytest.raises(ValueError):
            TemperatureProcessor(0.0)

    def test_top_k(self):
        out = TopKProcessor(2)(torch.tensor([1.0, 4.0, 3.0, 2.0]), [])
        assert torch.isinf(out[0]) and torch.isinf(out[3])
        assert out[1].item() == 4.0 and out[2].item() == 3.0

    def test_top_k_keeps_ties(self):
        out = TopKProcessor(1)(torch.tensor([1.0, 3.0, 3.0, 2.0]), [])
        assert torch.isfinite(out).tolist() == [False, True, True, False]

    def test_top_k_noop_when_k_covers_vocab(self):
        logits = torch.tensor([1.0, 2.0])
        assert TopKProcessor(5)(logits, []) is logits

    def test_top_p(self):
        logits = torch.tensor([math.log(p) for p in (0.5, 0.3, 0.15, 0.05)])
        out = TopPProcessor(0.7)(logits, [])
        assert torch.isfinite(out).tolist() == [True, True, False, False]

    def test_top_p_keeps_most_likely(self):
        logits = torch.tensor([math.log(p) for p in (0.1, 0.5, 0.3, 0.1)])
        out = TopPProcessor(0.45)(logits, [])
        assert torch.isfinite(out).tolist() == [False, True, False, False]

    def test_chain(self):
        logits = torch.tensor([1.0, 4.0, 3.0, 2.0])
        out = apply_logits_processors(logits, [TemperatureProcessor(2.0), TopKProcessor(1)], [])
        assert int(torch.isfinite(out).sum()) == 1
        assert out[1].item() == 2.0


# =====================================================================
# 3. sample_token
# =====================================================================

class TestSampleToken:

    def test_greedy_argmax(self):
        assert sample_token(np.array([0.1, 2.0, 0.3], dtype=np.float32), SamplingParams()) == 1

    def test_greedy_first_max(self):
        assert sample_token(np.array([5.0, 5.0, 1.0]), SamplingParams()) == 0

    def test_does_not_mutate_logits(self):
        logits = np.array([1.0, 2.0, 3.0], dtype=np.float32)
        sample_token(logits, SamplingParams(temperature=0.5, seed=0), generator=make_generator(0))
        assert logits.tolist() == [1.0, 2.0, 3.0]

    def test_top_k_one_is_deterministic(self):
        params = SamplingParams(temperature=1.0, top_k=1)
        logits = np.array([0.0, 1.0, 5.0, 2.0], dtype=np.float32)
        for _ in range(10):
            assert sample_token(logits, params) == 2

    def test_seeded_reproducible(self):
        params = SamplingParams(temperature=1.0, seed=1234)
        logits = np.zeros(50, dtype=np.float32)

        def draw():
            generator = make_generator(params.seed)
            return [sample_token(logits, params, generator=generator) for _ in range(20)]

        assert draw() == draw()

    def test_samples_in_range(self):
        params = SamplingParams(temperature=1.0)
        logits = np.zeros(8, dtype=np.float32)
        for _ in range(20):
            assert 0 <= sample_token(logits, params) < 8

    def test_accepts_torch_tensor(self):
        assert sample_token(torch.tensor([0.0, 0.0, 9.0]), SamplingParams()) == 2

    def test_no_seed_no_generator(self):
        assert make_generator(None) is None


# =====================================================================
# 4. Chat templates
# =====================================================================

TEMPLATE = (
    "{{ bos_token }}{% for m in messages %}<|{{ m['role'] }}|>{{ m['content'] }}{% endfor %}"
    "{% if add_generation_prompt %}<|assistant|>{% endif %}"
)


class TestChatTemplate:

    def test_format_single_prompt(self):
        template = ChatTemplate(TEMPLATE, bos_token="<s>")
        assert template.format("hi") == "<s><|user|>hi<|assistant|>"

    def test_apply_without_generation_prompt(self):
        template = ChatTemplate(TEMPLATE, bos_token="")
        messages = [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hi"},
        ]
        assert template.apply(messages, add_generation_prompt=False) == "<|system|>be brief<|user|>hi"

    def test_load_from_jinja_file(self, tmp_path):
        (tmp_path / "chat_template.jinja").write_text(TEMPLATE, encoding="utf-8")
        template = load_chat_template(str(tmp_path))
        assert template.format("x") == "<|user|>x<|assistant|>"

    def test_load_from_tokenizer_config(self, tmp_path):
        config = {"chat_template": TEMPLATE, "bos_token": "<s>", "eos_token": "</s>"}
        (tmp_path / "tokenizer_config.json").write_text(json.dumps(config), encoding="utf-8")
        template = load_chat_template(str(tmp_path))
        assert template.format("x") == "<s><|user|>x<|assistant|>"

    def test_no_template(self, tmp_path):
        assert load_chat_template(str(tmp_path)) is None
