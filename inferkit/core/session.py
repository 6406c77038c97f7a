"""
inferkit :: Inference Session

The only collaborator the generation layer talks to:

    run(inputs)        named tensors in → named tensors out (one forward pass)
    input_names()      tensor names the model expects
    input_shape(name)  static shape metadata (dynamic dims are -1)
    close()            release native resources, idempotent

OnnxInferenceSession adapts onnxruntime.InferenceSession to this contract.
onnxruntime is optional: install with `pip install inferkit[onnx]`.

INL - 2025
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Set

import numpy as np

from inferkit.core.exceptions import (
    InferenceError, ModelLoadError, SessionStateError, TensorConversionError,
)
from inferkit.core.logging import get_logger
from inferkit.core.tensor import Tensor

try:
    import onnxruntime as ort
    HAS_ONNXRUNTIME = True
except ImportError:
    ort = None
    HAS_ONNXRUNTIME = False

logger = get_logger("inferkit.session")


class InferenceSession(ABC):
    """Opaque forward-pass engine."""

    @abstractmethod
    def run(self, inputs: Dict[str, Tensor]) -> Dict[str, Tensor]:
        ...

    @abstractmethod
    def input_names(self) -> Set[str]:
        ...

    @abstractmethod
    def input_shape(self, name: str) -> List[int]:
        ...

    @abstractmethod
    def close(self):
        ...

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class OnnxInferenceSession(InferenceSession):
    """
    ONNX Runtime backed session.

    Hardware configuration is a pass-through: `providers` is handed to
    onnxruntime unchanged (default: CPUExecutionProvider).
    """

    def __init__(self, model_path: str, providers: Optional[Sequence[str]] = None):
        if not HAS_ONNXRUNTIME:
            raise ModelLoadError("onnxruntime not available (pip install inferkit[onnx])")

        self.model_path = str(model_path)
        logger.info(f"Loading ONNX model from {self.model_path}")
        try:
            session_options = ort.SessionOptions()
            session_options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
            self._session = ort.InferenceSession(
                self.model_path,
                sess_options=session_options,
                providers=list(providers or ["CPUExecutionProvider"]),
            )
        except Exception as e:
            raise ModelLoadError(f"Failed to load model from {self.model_path}: {e}") from e

        self._inputs = {inp.name: inp for inp in self._session.get_inputs()}
        self._output_names = [out.name for out in self._session.get_outputs()]

    def run(self, inputs: Dict[str, Tensor]) -> Dict[str, Tensor]:
        session = self._require_open()
        feed = {name: tensor.to_numpy() for name, tensor in inputs.items()}
        try:
            results = session.run(self._output_names, feed)
        except Exception as e:
            raise InferenceError(f"Inference failed: {e}") from e

        outputs: Dict[str, Tensor] = {}
        for name, value in zip(self._output_names, results):
            array = np.asarray(value)
            try:
                outputs[name] = Tensor.from_numpy(array)
            except TensorConversionError:
                logger.debug(f"Skipping output {name} with dtype {array.dtype}")
        return outputs

    def input_names(self) -> Set[str]:
        return set(self._inputs)

    def input_shape(self, name: str) -> List[int]:
        if name not in self._inputs:
            raise KeyError(f"Model has no input named {name!r}")
        # Symbolic dims come back as strings or None
        return [d if isinstance(d, int) else -1 for d in self._inputs[name].shape]

    def close(self):
        if self._session is not None:
            logger.debug(f"Releasing ONNX session for {self.model_path}")
        self._session = None

    def _require_open(self):
        if self._session is None:
            raise SessionStateError(f"Session for {self.model_path} is closed")
        return self._session
