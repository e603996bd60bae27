from __future__ import annotations

from typing import Any, List

import numpy as np

from qsoftmax.lowering.ir import Dim, OperatorIR, reduced_shape


def broadcast_shapes(shape_a: List[Dim], shape_b: List[Dim]) -> List[Dim]:
    rank = max(len(shape_a), len(shape_b))
    a = [1] * (rank - len(shape_a)) + list(shape_a)
    b = [1] * (rank - len(shape_b)) + list(shape_b)
    out: List[Dim] = []
    for dim_a, dim_b in zip(a, b):
        if dim_a == 1:
            out.append(dim_b)
        elif dim_b == 1 or dim_a == dim_b:
            out.append(dim_a)
        elif isinstance(dim_a, int) and isinstance(dim_b, int):
            raise ValueError(f"Shapes are not broadcastable. a={shape_a} b={shape_b}")
        else:
            # symbolic vs concrete: the concrete extent wins
            out.append(dim_a if isinstance(dim_a, int) else dim_b)
    return out


def make_const_i64(ctx: Any, base_name: str, value: int) -> str:
    return ctx.add_const_tensor(base_name, np.asarray(int(value), dtype=np.int64))


def make_cast(ctx: Any, input_name: str, dtype: str, base_name: str) -> str:
    output_name = ctx.add_intermediate_tensor(
        base_name,
        dtype=dtype,
        shape=ctx.get_tensor_shape(input_name),
    )
    ctx.add_operator(
        OperatorIR(
            op_type="CAST",
            inputs=[input_name],
            outputs=[output_name],
            options={
                "inDataType": ctx.get_tensor_dtype(input_name),
                "outDataType": dtype,
            },
        )
    )
    return output_name


def make_binary(ctx: Any, op_type: str, lhs_name: str, rhs_name: str, base_name: str) -> str:
    output_name = ctx.add_intermediate_tensor(
        base_name,
        dtype=ctx.get_tensor_dtype(lhs_name),
        shape=broadcast_shapes(
            ctx.get_tensor_shape(lhs_name),
            ctx.get_tensor_shape(rhs_name),
        ),
    )
    ctx.add_operator(
        OperatorIR(
            op_type=op_type,
            inputs=[lhs_name, rhs_name],
            outputs=[output_name],
        )
    )
    return output_name


def make_reduce(ctx: Any, op_type: str, input_name: str, axis: int, base_name: str) -> str:
    axes_const = ctx.add_const_tensor(
        f"{base_name}_axes",
        np.asarray([int(axis)], dtype=np.int32),
    )
    output_name = ctx.add_intermediate_tensor(
        base_name,
        dtype=ctx.get_tensor_dtype(input_name),
        shape=reduced_shape(ctx.get_tensor_shape(input_name), axis),
    )
    ctx.add_operator(
        OperatorIR(
            op_type=op_type,
            inputs=[input_name, axes_const],
            outputs=[output_name],
            options={"keepDims": True},
        )
    )
    return output_name
