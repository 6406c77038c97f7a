"""
inferkit :: Core

Generic infrastructure shared by every model family.
  - math_ops: softmax / top-k / nms / ctc post-processing kernels
  - tensor / session: named-tensor boundary to the inference runtime
  - sampling / logits_processor: next-token selection
  - chat_template: prompt formatting
  - logging / exceptions: ambient plumbing
"""

from inferkit.core.exceptions import (
    InferkitError, TokenizerConfigError, ModelSourceError, ModelLoadError,
    InferenceError, TensorConversionError, SessionStateError, SessionCloseError,
)
from inferkit.core.tensor import Tensor
from inferkit.core.session import InferenceSession, OnnxInferenceSession
from inferkit.core.sampling import SamplingParams, sample_token
from inferkit.core.chat_template import ChatTemplate, load_chat_template
