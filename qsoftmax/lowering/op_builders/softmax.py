from __future__ import annotations

from typing import Any, Dict, Optional

import numpy as np

from qsoftmax.lowering.constants import (
    DEFAULT_ALGORITHM_CONSTANTS,
    INT64_MAX,
    MAX_SHIFT,
    AlgorithmConstants,
    ShiftGuard,
)
from qsoftmax.lowering.errors import (
    NumericPreconditionViolation,
    QnnSoftmaxError,
    TypeContractViolation,
)
from qsoftmax.lowering.ir import OperatorIR
from qsoftmax.lowering.op_builders.shared import (
    make_binary,
    make_cast,
    make_const_i64,
    make_reduce,
)
from qsoftmax.lowering.type_relation import normalize_axis
from qsoftmax.utils.logging import debug, warn


def node_label(node: OperatorIR) -> str:
    return str(node.options.get("name", "") or node.outputs[0])


def _require_scalar_const(ctx: Any, tensor_name: str, label: str, node_name: str) -> np.ndarray:
    value = ctx.get_constant_array(tensor_name)
    if value is None:
        raise QnnSoftmaxError(
            reason_code="requires_constant_input",
            message=f"{label} must be constant to fold the reciprocal scale. tensor={tensor_name}",
            node_name=node_name,
        )
    value = np.asarray(value)
    if value.size != 1:
        raise TypeContractViolation(
            reason_code="invalid_quantization_param",
            message=f"{label} must be a scalar. tensor={tensor_name} shape={list(value.shape)}",
            slot_index=1,
            expected="FLOAT32[]",
            actual=f"FLOAT32{list(value.shape)}",
            node_name=node_name,
        )
    return value.reshape(-1)[0]


def reciprocal_scale(scale: Any, node_name: str = "") -> int:
    """x0 = round(1 / scale), evaluated in float32 like the runtime would."""
    scale_f32 = np.float32(scale)
    if not np.isfinite(scale_f32) or scale_f32 <= 0.0:
        raise NumericPreconditionViolation(
            reason_code="invalid_scale",
            message=f"input scale must be finite and positive. scale={float(scale_f32)}",
            context={"scale": float(scale_f32)},
            node_name=node_name,
        )
    with np.errstate(over="ignore"):
        recip = np.float32(1.0) / scale_f32
    if not np.isfinite(recip) or recip >= np.float32(2.0 ** 62):
        raise NumericPreconditionViolation(
            reason_code="reciprocal_scale_overflow",
            message=f"1/scale does not fit the int64 domain. scale={float(scale_f32)}",
            context={"scale": float(scale_f32)},
            node_name=node_name,
        )
    x0 = int(np.round(recip))
    if x0 == 0:
        raise NumericPreconditionViolation(
            reason_code="zero_reciprocal_scale",
            message=(
                "round(1/scale) evaluates to 0, the integer softmax would divide by zero. "
                f"scale={float(scale_f32)}"
            ),
            context={"scale": float(scale_f32), "x0": x0},
            node_name=node_name,
        )
    return x0


def build_qnn_softmax_op(
    node: OperatorIR,
    ctx: Any,
    constants: Optional[AlgorithmConstants] = None,
    shift_guard: Optional[ShiftGuard] = None,
) -> Dict[str, Any]:
    """Emit the integer-only softmax for one qnn.softmax node into ctx.

    Returns the names of the main stage tensors together with the folded
    reciprocal scale so callers can inspect or evaluate intermediates.
    """
    constants = constants if constants is not None else DEFAULT_ALGORITHM_CONSTANTS
    shift_guard = ShiftGuard.resolve(shift_guard)
    name = node_label(node)

    if len(node.inputs) != 5 or len(node.outputs) != 1:
        raise TypeContractViolation(
            reason_code="invalid_input_count",
            message=(
                "qnn.softmax expects 5 inputs and 1 output. "
                f"inputs={len(node.inputs)} outputs={len(node.outputs)}"
            ),
            node_name=name,
        )
    x_name, x_scale_name, x_zero_name, y_scale_name, y_zero_name = node.inputs
    output_name = node.outputs[0]

    x_dtype = ctx.get_tensor_dtype(x_name)
    if x_dtype != "INT8":
        raise TypeContractViolation(
            reason_code="unsupported_input_dtype",
            message=f"Expected quantized softmax type(INT8) for input but was {x_dtype}",
            slot_index=0,
            expected="INT8",
            actual=x_dtype,
            node_name=name,
        )
    input_shape = ctx.get_tensor_shape(x_name)
    rank = len(input_shape)
    axis = normalize_axis(int(node.options.get("axis", -1)), rank)
    if axis is None:
        raise TypeContractViolation(
            reason_code="axis_out_of_range",
            message=f"axis={node.options.get('axis')} is out of range for input of rank {rank}",
            slot_index=0,
            expected=f"axis in [{-rank}, {rank})",
            actual=str(node.options.get("axis")),
            node_name=name,
        )

    x_scale = _require_scalar_const(ctx, x_scale_name, "qnn.softmax input scale", name)
    x0 = reciprocal_scale(x_scale, node_name=name)

    guarded = not constants.shift_in_range(x0)
    if guarded and shift_guard == ShiftGuard.STRICT:
        raise NumericPreconditionViolation(
            reason_code="negative_shift_amount",
            message=(
                "exponent shift n - q can become negative for this input scale. "
                f"q_max={constants.max_quotient(x0)} n={constants.n} x0={x0}"
            ),
            context={"q_max": constants.max_quotient(x0), "n": constants.n, "x0": x0},
            node_name=name,
        )
    # A symbolic reduced extent only bounds a single lane.
    extent = input_shape[axis]
    known_extent = isinstance(extent, int)
    sum_bound = constants.exp_sum_bound(x0, extent if known_extent else 1)
    if sum_bound > INT64_MAX:
        context = {
            "x0": x0,
            "n": constants.n,
            "axis_extent": extent,
            "sum_bound": sum_bound,
        }
        if shift_guard == ShiftGuard.STRICT:
            raise NumericPreconditionViolation(
                reason_code="exp_sum_overflow",
                message=(
                    "the exponent sum can exceed the int64 range. "
                    f"x0={x0} n={constants.n} axis_extent={extent} sum_bound={sum_bound}"
                ),
                context=context,
                node_name=name,
            )
        warn(
            f"qnn.softmax {name}: the exponent sum can exceed the int64 range and wrap. "
            f"x0={x0} n={constants.n} axis_extent={extent} sum_bound={sum_bound}"
        )
    elif not known_extent and x0.bit_length() + constants.n > MAX_SHIFT - 1:
        warn(
            f"qnn.softmax {name}: x0={x0} with n={constants.n} leaves little int64 headroom, "
            f"the exponent sum may overflow along the symbolic axis {extent}."
        )

    # Widen and re-center: data - zero_point in int64.
    data_i64 = make_cast(ctx, x_name, "INT64", f"{name}_data_i64")
    x_zero = ctx.get_constant_array(x_zero_name)
    if x_zero is not None:
        zero_i64 = make_const_i64(ctx, f"{name}_zero_point_i64", int(np.asarray(x_zero).reshape(-1)[0]))
    else:
        zero_i64 = make_cast(ctx, x_zero_name, "INT64", f"{name}_zero_point_i64")
    centered = make_binary(ctx, "SUB", data_i64, zero_i64, f"{name}_centered")

    x0_const = make_const_i64(ctx, f"{name}_x0", x0)
    neg_x0_const = make_const_i64(ctx, f"{name}_neg_x0", -x0)
    one = make_const_i64(ctx, f"{name}_one", 1)
    four = make_const_i64(ctx, f"{name}_four", 4)

    max_ = make_reduce(ctx, "REDUCE_MAX", centered, axis, f"{name}_max")
    shifted = make_binary(ctx, "SUB", centered, max_, f"{name}_shifted")

    # shifted * log2(e) with shifts: x + x/2 - x/16
    half = make_binary(ctx, "RIGHT_SHIFT", shifted, one, f"{name}_shifted_half")
    sixteenth = make_binary(ctx, "RIGHT_SHIFT", shifted, four, f"{name}_shifted_sixteenth")
    adjusted = make_binary(
        ctx,
        "SUB",
        make_binary(ctx, "ADD", shifted, half, f"{name}_adjusted_partial"),
        sixteenth,
        f"{name}_adjusted",
    )

    q = make_binary(ctx, "DIV", adjusted, neg_x0_const, f"{name}_q")
    r = make_binary(
        ctx,
        "SUB",
        adjusted,
        make_binary(ctx, "MUL", q, neg_x0_const, f"{name}_q_times_divisor"),
        f"{name}_r",
    )
    base = make_binary(
        ctx,
        "ADD",
        make_binary(ctx, "RIGHT_SHIFT", r, one, f"{name}_r_half"),
        x0_const,
        f"{name}_base",
    )

    n_const = make_const_i64(ctx, f"{name}_n", constants.n)
    shift = make_binary(ctx, "SUB", n_const, q, f"{name}_shift")
    if guarded:
        zero = make_const_i64(ctx, f"{name}_zero", 0)
        max_shift = make_const_i64(ctx, f"{name}_max_shift", MAX_SHIFT)
        left = make_binary(ctx, "MAXIMUM", shift, zero, f"{name}_left_shift")
        right = make_binary(
            ctx,
            "MINIMUM",
            make_binary(
                ctx,
                "MAXIMUM",
                make_binary(ctx, "SUB", q, n_const, f"{name}_shift_overflow"),
                zero,
                f"{name}_right_shift_unclamped",
            ),
            max_shift,
            f"{name}_right_shift",
        )
        exps = make_binary(
            ctx,
            "RIGHT_SHIFT",
            make_binary(ctx, "LEFT_SHIFT", base, left, f"{name}_exp_scaled"),
            right,
            f"{name}_exp",
        )
    else:
        exps = make_binary(ctx, "LEFT_SHIFT", base, shift, f"{name}_exp")

    sums = make_reduce(ctx, "SUM", exps, axis, f"{name}_exp_sum")
    normalizer = make_const_i64(ctx, f"{name}_normalizer", constants.normalizer)
    recip = make_binary(ctx, "DIV", normalizer, sums, f"{name}_exp_sum_reciprocal")
    scaled = make_binary(ctx, "MUL", recip, exps, f"{name}_scaled")
    output_shift = make_const_i64(ctx, f"{name}_output_shift", constants.output_shift)
    output_wide = make_binary(ctx, "RIGHT_SHIFT", scaled, output_shift, f"{name}_output_wide")
    output_i32 = make_cast(ctx, output_wide, "INT32", f"{name}_output_i32")

    synthetic_scale = ctx.add_const_tensor(f"{name}_synthetic_scale", constants.synthetic_scale)
    synthetic_zero = ctx.add_const_tensor(f"{name}_synthetic_zero_point", np.asarray(0, dtype=np.int32))
    ctx.ensure_tensor(output_name, dtype=constants.output_dtype, shape=input_shape)
    output_tensor = ctx.model_ir.tensors[output_name]
    output_tensor.dtype = constants.output_dtype
    output_tensor.shape = list(input_shape)
    ctx.add_operator(
        OperatorIR(
            op_type="REQUANTIZE",
            inputs=[output_i32, synthetic_scale, synthetic_zero, y_scale_name, y_zero_name],
            outputs=[output_name],
            options={
                "outDataType": constants.output_dtype,
                "shape": list(input_shape),
                "axis": -1,
                "rounding": "UPWARD",
            },
        )
    )
    debug(
        f"qnn.softmax {name}: axis={axis} x0={x0} shift_guarded={guarded} "
        f"ops={len(ctx.model_ir.operators)}"
    )
    return {
        "x0": x0,
        "axis": axis,
        "shift_guarded": guarded,
        "stages": {
            "centered": centered,
            "max": max_,
            "shifted": shifted,
            "adjusted": adjusted,
            "q": q,
            "r": r,
            "base": base,
            "exp": exps,
            "exp_sum": sums,
            "output_wide": output_wide,
            "output": output_name,
        },
    }
