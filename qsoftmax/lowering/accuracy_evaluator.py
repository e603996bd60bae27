from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import numpy as np

from qsoftmax.lowering.interpreter import run_model_ir
from qsoftmax.lowering.ir import Dim, ModelIR, OperatorIR, numpy_dtype_from_ir_dtype


_QUANT_METRIC_THRESHOLDS = {
    "max_abs": 5.0e-2,
    "mean_abs": 1.0e-2,
    "rmse": 2.0e-2,
    "cosine_similarity": 0.98,
}


def dequantize(data: np.ndarray, scale: Any, zero_point: Any) -> np.ndarray:
    s = np.float64(np.float32(np.asarray(scale).reshape(-1)[0]))
    z = np.int64(np.asarray(zero_point).reshape(-1)[0])
    return (np.asarray(data).astype(np.int64) - z).astype(np.float64) * s


def float_softmax(x: np.ndarray, axis: int) -> np.ndarray:
    x_max = np.max(x, axis=axis, keepdims=True)
    e = np.exp(x - x_max)
    return e / np.sum(e, axis=axis, keepdims=True)


class _MetricAccumulator:
    def __init__(self) -> None:
        self.numel = 0
        self.max_abs = 0.0
        self.sum_abs = 0.0
        self.sum_sq = 0.0
        self.sum_dot = 0.0
        self.sum_ref_norm = 0.0
        self.sum_pred_norm = 0.0
        self.max_step_error = 0

    def update(self, ref: np.ndarray, pred: np.ndarray) -> None:
        ref_flat = np.asarray(ref, dtype=np.float64).reshape(-1)
        pred_flat = np.asarray(pred, dtype=np.float64).reshape(-1)
        if ref_flat.shape != pred_flat.shape:
            raise ValueError(
                "Evaluation tensor shape mismatch. "
                f"ref={tuple(ref.shape)} pred={tuple(pred.shape)}"
            )
        if ref_flat.size == 0:
            return
        diff = ref_flat - pred_flat
        abs_diff = np.abs(diff)
        self.max_abs = max(self.max_abs, float(np.max(abs_diff)))
        self.sum_abs += float(np.sum(abs_diff))
        self.sum_sq += float(np.sum(diff * diff))
        self.sum_dot += float(np.dot(ref_flat, pred_flat))
        self.sum_ref_norm += float(np.dot(ref_flat, ref_flat))
        self.sum_pred_norm += float(np.dot(pred_flat, pred_flat))
        self.numel += int(ref_flat.size)

    def update_steps(self, ref_q: np.ndarray, pred_q: np.ndarray) -> None:
        if np.asarray(ref_q).size == 0:
            return
        steps = np.abs(np.asarray(ref_q, dtype=np.int64) - np.asarray(pred_q, dtype=np.int64))
        self.max_step_error = max(self.max_step_error, int(np.max(steps)))

    def to_dict(self) -> Dict[str, float]:
        if self.numel == 0:
            return {
                "max_abs": 0.0,
                "mean_abs": 0.0,
                "rmse": 0.0,
                "cosine_similarity": 1.0,
                "max_step_error": 0,
            }
        mean_abs = self.sum_abs / float(self.numel)
        rmse = float(np.sqrt(self.sum_sq / float(self.numel)))
        if self.sum_ref_norm == 0.0 and self.sum_pred_norm == 0.0:
            cosine = 1.0
        elif self.sum_ref_norm == 0.0 or self.sum_pred_norm == 0.0:
            cosine = 0.0
        else:
            cosine = float(
                self.sum_dot / np.sqrt(self.sum_ref_norm * self.sum_pred_norm)
            )
            cosine = float(np.clip(cosine, -1.0, 1.0))
        return {
            "max_abs": float(self.max_abs),
            "mean_abs": float(mean_abs),
            "rmse": float(rmse),
            "cosine_similarity": float(cosine),
            "max_step_error": int(self.max_step_error),
        }


def _resolve_metric_thresholds(metric_thresholds: Optional[Dict[str, float]]) -> Dict[str, float]:
    base = dict(_QUANT_METRIC_THRESHOLDS)
    if metric_thresholds is None:
        return base
    for key in base.keys():
        if key in metric_thresholds and metric_thresholds[key] is not None:
            base[key] = float(metric_thresholds[key])
    return base


def _judge_metrics(
    *,
    metrics: Dict[str, float],
    thresholds: Dict[str, float],
) -> Dict[str, Any]:
    checks = {
        "max_abs": float(metrics["max_abs"]) <= float(thresholds["max_abs"]),
        "mean_abs": float(metrics["mean_abs"]) <= float(thresholds["mean_abs"]),
        "rmse": float(metrics["rmse"]) <= float(thresholds["rmse"]),
        "cosine_similarity": float(metrics["cosine_similarity"]) >= float(thresholds["cosine_similarity"]),
    }
    return {
        "pass": bool(all(checks.values())),
        "checks": checks,
    }


def _concrete_shape(shape: List[Dim]) -> List[int]:
    return [int(d) if isinstance(d, int) else 1 for d in shape]


def _generate_seeded_input(shape: List[Dim], rng: np.random.Generator) -> np.ndarray:
    return rng.integers(-128, 128, size=_concrete_shape(shape), dtype=np.int64).astype(np.int8)


def _value_of(fragment: ModelIR, feeds: Dict[str, Any], name: str) -> np.ndarray:
    tensor = fragment.tensors.get(name, None)
    if tensor is not None and isinstance(tensor.data, np.ndarray):
        return tensor.data
    if name in feeds:
        return np.asarray(feeds[name])
    raise ValueError(f"No value for quantization parameter tensor: {name}")


def evaluate_lowering_accuracy(
    *,
    fragment: ModelIR,
    op: OperatorIR,
    axis: int,
    num_samples: Optional[int] = None,
    seed: int = 0,
    extra_feeds: Optional[Dict[str, Any]] = None,
    metric_thresholds: Optional[Dict[str, float]] = None,
) -> Dict[str, Any]:
    """Compare a lowered qnn.softmax fragment against float softmax.

    Inputs are seeded random int8 tensors. Metrics are taken on dequantized
    outputs; `max_step_error` counts output quantization steps between the
    fragment and the float result requantized with the same output scheme.
    """
    if num_samples is None:
        num_samples = int(os.environ.get("QSOFTMAX_EVAL_NUM_SAMPLES", "10"))
    extra_feeds = dict(extra_feeds) if extra_feeds is not None else {}
    x_name, x_scale_name, x_zero_name, y_scale_name, y_zero_name = op.inputs
    output_name = op.outputs[0]
    x_scale = _value_of(fragment, extra_feeds, x_scale_name)
    x_zero = _value_of(fragment, extra_feeds, x_zero_name)
    y_scale = _value_of(fragment, extra_feeds, y_scale_name)
    y_zero = _value_of(fragment, extra_feeds, y_zero_name)
    out_dtype = fragment.tensors[output_name].dtype

    rng = np.random.default_rng(seed)
    acc = _MetricAccumulator()
    for _ in range(int(num_samples)):
        data = _generate_seeded_input(fragment.tensors[x_name].shape, rng)
        feeds = dict(extra_feeds)
        feeds[x_name] = data
        pred_q = run_model_ir(fragment, feeds)[output_name]
        ref = float_softmax(dequantize(data, x_scale, x_zero), axis=axis)
        acc.update(ref, dequantize(pred_q, y_scale, y_zero))
        acc.update_steps(_quantize(ref, y_scale, y_zero, out_dtype), pred_q)

    metrics = acc.to_dict()
    thresholds = _resolve_metric_thresholds(metric_thresholds)
    judgement = _judge_metrics(metrics=metrics, thresholds=thresholds)
    return {
        "node_output": output_name,
        "num_samples": int(num_samples),
        "seed": int(seed),
        "metrics": metrics,
        "thresholds": thresholds,
        "pass": judgement["pass"],
        "checks": judgement["checks"],
    }


def _quantize(real: np.ndarray, scale: Any, zero_point: Any, out_dtype: str) -> np.ndarray:
    info = np.iinfo(numpy_dtype_from_ir_dtype(out_dtype))
    s = np.float64(np.float32(np.asarray(scale).reshape(-1)[0]))
    z = np.int64(np.asarray(zero_point).reshape(-1)[0])
    q = np.floor(np.asarray(real, dtype=np.float64) / s + 0.5).astype(np.int64) + z
    return np.clip(q, info.min, info.max)
