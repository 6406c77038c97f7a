"""
inferkit :: Chat Template

Apply chat templates to messages for conversational models.
Loads Jinja2 templates (the `chat_template` string shipped with
HuggingFace checkpoints, or a standalone .jinja file).

INL - 2025
"""

import json
import os
from typing import List, Dict, Optional


class ChatTemplate:
    """
    Chat template renderer.

    Renders a list of {"role", "content"} messages into a prompt string.
    Special-token variables (bos_token, eos_token, ...) are passed through
    to the template as keyword arguments.
    """

    def __init__(self, template_str: str, **special_tokens: str):
        from jinja2 import Template
        self.template = Template(template_str)
        self.special_tokens = special_tokens

    def apply(
        self,
        messages: List[Dict[str, str]],
        add_generation_prompt: bool = True,
    ) -> str:
        """
        Render messages into a prompt string.

        Args:
            messages: [{"role": "user", "content": "..."}, ...]
            add_generation_prompt: append assistant turn marker

        Returns:
            formatted prompt string
        """
        return self.template.render(
            messages=messages,
            add_generation_prompt=add_generation_prompt,
            **self.special_tokens,
        )

    def format(self, prompt: str) -> str:
        """Wrap a single user prompt."""
        return self.apply([{"role": "user", "content": prompt}])

    @staticmethod
    def from_file(path: str, **special_tokens: str) -> "ChatTemplate":
        """Load template from a .jinja file."""
        with open(path, "r", encoding="utf-8") as f:
            return ChatTemplate(f.read(), **special_tokens)


def load_chat_template(model_dir: str) -> Optional[ChatTemplate]:
    """
    Find a chat template for a model directory.

    Looks for chat_template.jinja / .j2 first, then the `chat_template`
    field of tokenizer_config.json.
    """
    for name in ["chat_template.jinja", "chat_template.j2"]:
        path = os.path.join(model_dir, name)
        if os.path.exists(path):
            return ChatTemplate.from_file(path)

    config_path = os.path.join(model_dir, "tokenizer_config.json")
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            config = json.load(f)
        template = config.get("chat_template")
        if isinstance(template, str):
            special = {
                key: config[key]
                for key in ("bos_token", "eos_token")
                if isinstance(config.get(key), str)
            }
            return ChatTemplate(template, **special)

    return None
