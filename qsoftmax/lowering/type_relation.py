from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple

from qsoftmax.lowering.errors import TypeContractViolation
from qsoftmax.lowering.ir import IncompleteTypeIR, TensorTypeIR, TypeIR


NUM_TYPE_SLOTS = 6

# slot index -> (label, dtype)
_QUANT_PARAM_SLOTS = {
    1: ("scale", "FLOAT32"),
    2: ("zero_point", "INT32"),
    3: ("output_scale", "FLOAT32"),
    4: ("output_zero_point", "INT32"),
}


class RelationState(str, Enum):
    UNRESOLVED = "unresolved"
    RESOLVED = "resolved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class TypeRelationResult:
    """Outcome of one invocation of the qnn.softmax type relation.

    UNRESOLVED means "call again once more types are known"; `types` is then
    the unchanged input. RESOLVED carries all six slots concretely typed.
    REJECTED carries the violation in `error` and is never retried.
    """
    state: RelationState
    types: Tuple[TypeIR, ...]
    error: Optional[TypeContractViolation] = None

    @property
    def resolved(self) -> bool:
        return self.state == RelationState.RESOLVED

    def raise_if_rejected(self) -> None:
        if self.state == RelationState.REJECTED and self.error is not None:
            raise self.error


def normalize_axis(axis: int, rank: int) -> Optional[int]:
    a = int(axis)
    if a < -int(rank) or a >= int(rank):
        return None
    if a < 0:
        a += int(rank)
    return a


def shapes_match(shape_a: Sequence[Any], shape_b: Sequence[Any]) -> bool:
    if len(shape_a) != len(shape_b):
        return False
    for dim_a, dim_b in zip(shape_a, shape_b):
        # symbolic dims are unknown extents
        if isinstance(dim_a, str) or isinstance(dim_b, str):
            continue
        if dim_a != dim_b:
            return False
    return True


def _describe(t: TypeIR) -> str:
    return t.describe()


def _reject(
    types: Tuple[TypeIR, ...],
    *,
    reason_code: str,
    message: str,
    slot_index: Optional[int],
    expected: Optional[str],
    actual: Optional[str],
    node_name: str,
) -> TypeRelationResult:
    return TypeRelationResult(
        state=RelationState.REJECTED,
        types=types,
        error=TypeContractViolation(
            reason_code=reason_code,
            message=message,
            slot_index=slot_index,
            expected=expected,
            actual=actual,
            node_name=node_name,
        ),
    )


def qnn_softmax_type_relation(
    types: Sequence[TypeIR],
    attrs: Optional[Dict[str, Any]] = None,
    node_name: str = "",
) -> TypeRelationResult:
    # Expected slots: input, scale, zero_point, output_scale, output_zero_point, output
    slots = tuple(types)
    attrs = attrs if attrs is not None else {}
    if len(slots) != NUM_TYPE_SLOTS:
        return _reject(
            slots,
            reason_code="invalid_type_count",
            message=f"qnn.softmax expects {NUM_TYPE_SLOTS} type slots but got {len(slots)}",
            slot_index=None,
            expected=str(NUM_TYPE_SLOTS),
            actual=str(len(slots)),
            node_name=node_name,
        )

    x = slots[0]
    if not isinstance(x, TensorTypeIR):
        return TypeRelationResult(state=RelationState.UNRESOLVED, types=slots)
    if x.dtype != "INT8":
        return _reject(
            slots,
            reason_code="unsupported_input_dtype",
            message=f"Expected quantized softmax type(INT8) for input but was {x.dtype}",
            slot_index=0,
            expected="INT8",
            actual=_describe(x),
            node_name=node_name,
        )

    for i in _QUANT_PARAM_SLOTS:
        if isinstance(slots[i], IncompleteTypeIR):
            return TypeRelationResult(state=RelationState.UNRESOLVED, types=slots)

    for i, (label, dtype) in _QUANT_PARAM_SLOTS.items():
        t = slots[i]
        expected = TensorTypeIR(shape=(), dtype=dtype)
        if not isinstance(t, TensorTypeIR) or not t.is_scalar() or t.dtype != dtype:
            return _reject(
                slots,
                reason_code="invalid_quantization_param",
                message=f"{label} (slot {i}) must be a scalar {dtype} but was {_describe(t)}",
                slot_index=i,
                expected=expected.describe(),
                actual=_describe(t),
                node_name=node_name,
            )

    resolved = list(slots)
    for i, (_, dtype) in _QUANT_PARAM_SLOTS.items():
        resolved[i] = TensorTypeIR(shape=(), dtype=dtype)

    axis = int(attrs.get("axis", -1))
    if normalize_axis(axis, x.rank) is None:
        return _reject(
            slots,
            reason_code="axis_out_of_range",
            message=f"axis={axis} is out of range for input of rank {x.rank}",
            slot_index=0,
            expected=f"axis in [{-x.rank}, {x.rank})",
            actual=str(axis),
            node_name=node_name,
        )

    # Identity shape: the output keeps the input shape; its dtype comes from
    # the output quantization scheme and is not overridden here.
    y = slots[5]
    if isinstance(y, IncompleteTypeIR):
        resolved[5] = TensorTypeIR(shape=x.shape, dtype="INT8")
    elif not shapes_match(x.shape, y.shape):
        return _reject(
            slots,
            reason_code="output_shape_mismatch",
            message=f"output shape {list(y.shape)} must equal input shape {list(x.shape)}",
            slot_index=5,
            expected=TensorTypeIR(shape=x.shape, dtype=y.dtype).describe(),
            actual=_describe(y),
            node_name=node_name,
        )
    return TypeRelationResult(state=RelationState.RESOLVED, types=tuple(resolved))
