"""
inferkit :: Math Ops

Stateless post-processing kernels shared by every model family:
  - softmax / sigmoid / log_softmax
  - top_k (stable, descending)
  - nms (greedy, IoU based)
  - l2_normalize
  - ctc_greedy_decode
  - cxcywh_to_xyxy

All functions allocate their own outputs; none mutate their inputs.

INL - 2025
"""

from typing import List, Optional

import numpy as np


def softmax(logits) -> np.ndarray:
    """Overflow-safe softmax: subtract the max before exponentiating."""
    x = np.asarray(logits, dtype=np.float32)
    if x.size == 0:
        return x.copy()
    exps = np.exp(x - np.max(x))
    return (exps / np.sum(exps)).astype(np.float32)


def sigmoid(values) -> np.ndarray:
    """Element-wise 1 / (1 + e^-x), stable for large |x|."""
    x = np.asarray(values, dtype=np.float64)
    # exp(-logaddexp(0, -x)) == 1 / (1 + exp(-x)) without overflow
    return np.exp(-np.logaddexp(0.0, -x)).astype(np.float32)


def log_softmax(logits) -> np.ndarray:
    """x - (max + log(sum(exp(x - max))))."""
    x = np.asarray(logits, dtype=np.float32)
    if x.size == 0:
        return x.copy()
    m = np.max(x)
    log_sum_exp = m + np.log(np.sum(np.exp(x - m)))
    return (x - log_sum_exp).astype(np.float32)


def top_k(values, k: int) -> List[int]:
    """
    Indices of the k largest values, in descending order.

    k is clamped to [0, len(values)]. Ties keep the lower index first.
    """
    x = np.asarray(values, dtype=np.float64).reshape(-1)
    k = max(0, min(int(k), x.size))
    if k == 0:
        return []
    # Stable sort on the negated values keeps first-seen order for ties
    order = np.argsort(-x, kind="stable")
    return [int(i) for i in order[:k]]


def nms(boxes, scores, iou_threshold: float) -> List[int]:
    """
    Greedy non-maximum suppression.

    Args:
        boxes: (N, 4) or flat (4N,) array of [x1, y1, x2, y2]
        scores: (N,) confidence per box
        iou_threshold: a box is suppressed when IoU with a kept box exceeds this

    Returns:
        kept indices, highest score first
    """
    scores = np.asarray(scores, dtype=np.float32).reshape(-1)
    n = scores.size
    if n == 0:
        return []
    boxes = np.asarray(boxes, dtype=np.float32).reshape(n, 4)

    order = top_k(scores, n)
    areas = (boxes[:, 2] - boxes[:, 0]) * (boxes[:, 3] - boxes[:, 1])
    suppressed = np.zeros(n, dtype=bool)
    keep: List[int] = []

    for i, idx in enumerate(order):
        if suppressed[idx]:
            continue
        keep.append(idx)
        x1, y1, x2, y2 = boxes[idx]
        for jdx in order[i + 1:]:
            if suppressed[jdx]:
                continue
            inter_w = max(0.0, min(x2, boxes[jdx, 2]) - max(x1, boxes[jdx, 0]))
            inter_h = max(0.0, min(y2, boxes[jdx, 3]) - max(y1, boxes[jdx, 1]))
            inter = inter_w * inter_h
            union = areas[idx] + areas[jdx] - inter
            iou = inter / union if union > 0 else 0.0
            if iou > iou_threshold:
                suppressed[jdx] = True

    return keep


def l2_normalize(vector) -> np.ndarray:
    """
    Scale to unit Euclidean norm.

    A zero vector has no direction; it is returned unchanged (as a copy)
    instead of producing NaNs.
    """
    v = np.asarray(vector, dtype=np.float32)
    norm = float(np.linalg.norm(v))
    if norm == 0.0:
        return v.copy()
    return (v / norm).astype(np.float32)


def ctc_greedy_decode(
    logits,
    blank_index: int = 0,
    time_steps: Optional[int] = None,
    vocab_size: Optional[int] = None,
) -> List[int]:
    """
    Standard CTC greedy decoding.

    argmax per time step, collapse consecutive repeats, drop blanks.
    `logits` is (T, V), or flat with time_steps and vocab_size given.
    """
    x = np.asarray(logits, dtype=np.float32)
    if time_steps is not None and vocab_size is not None:
        x = x.reshape(time_steps, vocab_size)
    if x.ndim != 2:
        raise ValueError(f"CTC logits must be 2-D (T, V), got shape {x.shape}")
    if x.shape[0] == 0:
        return []

    best = np.argmax(x, axis=1)
    result: List[int] = []
    prev = -1
    for token in best:
        token = int(token)
        if token != prev:
            if token != blank_index:
                result.append(token)
            prev = token
    return result


def cxcywh_to_xyxy(boxes) -> np.ndarray:
    """[cx, cy, w, h] → [x1, y1, x2, y2]. Accepts (N, 4) or flat (4N,)."""
    b = np.asarray(boxes, dtype=np.float32)
    flat = b.reshape(-1, 4)
    half_w = flat[:, 2] / 2.0
    half_h = flat[:, 3] / 2.0
    out = np.stack(
        [flat[:, 0] - half_w, flat[:, 1] - half_h, flat[:, 0] + half_w, flat[:, 1] + half_h],
        axis=1,
    )
    return out.reshape(b.shape).astype(np.float32)
