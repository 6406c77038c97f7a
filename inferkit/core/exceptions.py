"""
inferkit :: Exceptions

Error taxonomy:
  - configuration:  TokenizerConfigError, ModelSourceError, ModelLoadError
  - inference:      InferenceError (forward pass failed / output missing)
  - tensors:        TensorConversionError (dtype or shape mismatch)
  - misuse:         SessionStateError (decode before prefill, use after close)
  - cleanup:        SessionCloseError (one or more sub-sessions failed to close)

Nothing here is retried. A failed generation step leaves the KV cache
undefined; callers decide whether to reset_cache() and start over.

INL - 2025
"""

from typing import List, Sequence


class InferkitError(Exception):
    """Base class for every error raised by inferkit."""


class TokenizerConfigError(InferkitError, ValueError):
    """Tokenizer cannot be built from the given vocabulary / options."""


class ModelSourceError(InferkitError):
    """A tokenizer or model description file is missing or malformed."""


class ModelLoadError(InferkitError):
    """The inference runtime refused to load a model file."""


class InferenceError(InferkitError, RuntimeError):
    """A forward pass failed inside the inference runtime."""


class TensorConversionError(InferkitError, ValueError):
    """Tensor data does not match its declared dtype or shape."""


class SessionStateError(InferkitError, RuntimeError):
    """A generation session was used in a state that does not allow it."""


class SessionCloseError(InferkitError):
    """
    Closing one or more owned sessions failed.

    Every sub-session has already been attempted when this is raised;
    `errors` holds (name, exception) for each failure.
    """

    def __init__(self, errors: Sequence[tuple]):
        self.errors: List[tuple] = list(errors)
        names = ", ".join(name for name, _ in self.errors)
        super().__init__(f"Failed to close {len(self.errors)} session(s): {names}")
