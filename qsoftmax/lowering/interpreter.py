from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import numpy as np

from qsoftmax.lowering.constants import MAX_SHIFT
from qsoftmax.lowering.errors import NumericPreconditionViolation
from qsoftmax.lowering.ir import ModelIR, OperatorIR, numpy_dtype_from_ir_dtype


def _truncating_divide(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    if np.issubdtype(a.dtype, np.floating) or np.issubdtype(b.dtype, np.floating):
        return np.true_divide(a, b)
    if np.any(b == 0):
        raise ZeroDivisionError("integer DIV by zero in qsoftmax interpreter")
    sign = np.sign(a) * np.sign(b)
    return (np.abs(a) // np.abs(b)) * sign


def _checked_shift_amount(op: OperatorIR, amount: np.ndarray) -> np.ndarray:
    amount = np.asarray(amount)
    if amount.size > 0 and (int(np.min(amount)) < 0 or int(np.max(amount)) > MAX_SHIFT):
        raise NumericPreconditionViolation(
            reason_code="shift_amount_out_of_range",
            message=(
                f"{op.op_type} amount must be in [0, {MAX_SHIFT}]. "
                f"min={int(np.min(amount))} max={int(np.max(amount))} tensor={op.inputs[1]}"
            ),
            context={
                "op_type": op.op_type,
                "tensor": op.inputs[1],
                "min_amount": int(np.min(amount)),
                "max_amount": int(np.max(amount)),
            },
        )
    return amount


def _reduce_axes(values: Dict[str, np.ndarray], op: OperatorIR) -> tuple:
    return tuple(int(v) for v in np.asarray(values[op.inputs[1]]).reshape(-1).tolist())


def requantize(
    data: np.ndarray,
    input_scale: Any,
    input_zero_point: Any,
    output_scale: Any,
    output_zero_point: Any,
    out_dtype: str = "INT8",
) -> np.ndarray:
    """Reference requantization: dequantize, rescale, round half up, saturate."""
    dt = numpy_dtype_from_ir_dtype(out_dtype)
    info = np.iinfo(dt)
    in_scale = np.float64(np.float32(np.asarray(input_scale).reshape(-1)[0]))
    out_scale = np.float64(np.float32(np.asarray(output_scale).reshape(-1)[0]))
    in_zero = np.int64(np.asarray(input_zero_point).reshape(-1)[0])
    out_zero = np.int64(np.asarray(output_zero_point).reshape(-1)[0])
    real = (np.asarray(data).astype(np.int64) - in_zero).astype(np.float64) * in_scale
    q = np.floor(real / out_scale + 0.5).astype(np.int64) + out_zero
    return np.clip(q, info.min, info.max).astype(dt)


def _run_binary(fn: Callable[[np.ndarray, np.ndarray], np.ndarray]) -> Callable:
    def _impl(values: Dict[str, np.ndarray], op: OperatorIR) -> np.ndarray:
        return fn(values[op.inputs[0]], values[op.inputs[1]])
    return _impl


def _run_cast(values: Dict[str, np.ndarray], op: OperatorIR) -> np.ndarray:
    return np.asarray(values[op.inputs[0]]).astype(numpy_dtype_from_ir_dtype(op.options["outDataType"]))


def _run_left_shift(values: Dict[str, np.ndarray], op: OperatorIR) -> np.ndarray:
    amount = _checked_shift_amount(op, values[op.inputs[1]])
    return np.left_shift(values[op.inputs[0]], amount)


def _run_right_shift(values: Dict[str, np.ndarray], op: OperatorIR) -> np.ndarray:
    amount = _checked_shift_amount(op, values[op.inputs[1]])
    return np.right_shift(values[op.inputs[0]], amount)


def _run_reduce_max(values: Dict[str, np.ndarray], op: OperatorIR) -> np.ndarray:
    return np.max(
        values[op.inputs[0]],
        axis=_reduce_axes(values, op),
        keepdims=bool(op.options.get("keepDims", True)),
    )


def _run_sum(values: Dict[str, np.ndarray], op: OperatorIR) -> np.ndarray:
    x = values[op.inputs[0]]
    return np.sum(
        x,
        axis=_reduce_axes(values, op),
        keepdims=bool(op.options.get("keepDims", True)),
        dtype=x.dtype,
    )


def _run_requantize(values: Dict[str, np.ndarray], op: OperatorIR) -> np.ndarray:
    out = requantize(
        values[op.inputs[0]],
        values[op.inputs[1]],
        values[op.inputs[2]],
        values[op.inputs[3]],
        values[op.inputs[4]],
        out_dtype=str(op.options.get("outDataType", "INT8")),
    )
    shape = op.options.get("shape", None)
    if shape is not None and all(isinstance(d, int) for d in shape):
        out = out.reshape([int(d) for d in shape])
    return out


_KERNELS: Dict[str, Callable[[Dict[str, np.ndarray], OperatorIR], np.ndarray]] = {
    "CAST": _run_cast,
    "ADD": _run_binary(np.add),
    "SUB": _run_binary(np.subtract),
    "MUL": _run_binary(np.multiply),
    "DIV": _run_binary(_truncating_divide),
    "MAXIMUM": _run_binary(np.maximum),
    "MINIMUM": _run_binary(np.minimum),
    "LEFT_SHIFT": _run_left_shift,
    "RIGHT_SHIFT": _run_right_shift,
    "REDUCE_MAX": _run_reduce_max,
    "SUM": _run_sum,
    "REQUANTIZE": _run_requantize,
}


def get_supported_interpreter_ops() -> List[str]:
    return sorted(_KERNELS.keys())


def run_model_ir(
    model_ir: ModelIR,
    feeds: Dict[str, Any],
    keep_intermediates: bool = False,
    output_names: Optional[List[str]] = None,
) -> Dict[str, np.ndarray]:
    """Evaluate an integer fragment with numpy.

    Returns the graph outputs, or every computed tensor when
    `keep_intermediates` is set.
    """
    values: Dict[str, np.ndarray] = {}
    for name, tensor in model_ir.tensors.items():
        if isinstance(tensor.data, np.ndarray):
            values[name] = tensor.data
    for name in model_ir.inputs:
        if name not in feeds:
            raise ValueError(f"Missing input feed for tensor: {name}")
        dtype = numpy_dtype_from_ir_dtype(model_ir.tensors[name].dtype)
        values[name] = np.asarray(feeds[name]).astype(dtype, copy=False)
    for name, value in feeds.items():
        if name not in values:
            values[name] = np.asarray(value)

    with np.errstate(over="ignore"):
        for op in model_ir.operators:
            kernel = _KERNELS.get(op.op_type, None)
            if kernel is None:
                raise NotImplementedError(
                    f"op is not supported by the qsoftmax interpreter: {op.op_type}"
                )
            for name in op.inputs:
                if name not in values:
                    raise ValueError(f"Tensor {name} consumed by {op.op_type} has no value")
            values[op.outputs[0]] = np.asarray(kernel(values, op))

    if keep_intermediates:
        return values
    names = output_names if output_names is not None else list(model_ir.outputs)
    return {name: values[name] for name in names}
