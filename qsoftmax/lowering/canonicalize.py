from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from qsoftmax.lowering.constants import AlgorithmConstants, ShiftGuard
from qsoftmax.lowering.context import LoweringContext
from qsoftmax.lowering.errors import QnnSoftmaxError
from qsoftmax.lowering.ir import (
    IncompleteTypeIR,
    ModelIR,
    OperatorIR,
    TensorIR,
    TensorTypeIR,
    TypeIR,
    clone_model_ir,
)
from qsoftmax.lowering.op_builders import node_label
from qsoftmax.lowering.op_registry import get_operator_descriptor, resolve_operator
from qsoftmax.lowering.type_relation import RelationState, TypeRelationResult
from qsoftmax.utils.logging import Color, debug, warn


@dataclass
class SoftmaxLowering:
    fragment: ModelIR
    x0: int
    axis: int
    shift_guarded: bool
    stages: Dict[str, str] = field(default_factory=dict)


def _type_of(model_ir: ModelIR, name: str) -> TypeIR:
    tensor = model_ir.tensors.get(name, None)
    if tensor is None:
        return IncompleteTypeIR(hint=name)
    return tensor.to_type()


def infer_node_types(op: OperatorIR, model_ir: ModelIR) -> TypeRelationResult:
    descriptor = resolve_operator(op)
    types = [_type_of(model_ir, name) for name in list(op.inputs) + list(op.outputs)]
    attrs = dict(descriptor.default_attrs)
    attrs.update({k: v for k, v in op.options.items() if k != "name"})
    return descriptor.type_relation(types, attrs, node_label(op))


def apply_resolved_types(model_ir: ModelIR, op: OperatorIR, types: Iterable[TypeIR]) -> None:
    """Materialize resolved slot types on tensors the host had left untyped."""
    for name, t in zip(list(op.inputs) + list(op.outputs), types):
        if not isinstance(t, TensorTypeIR):
            continue
        if name not in model_ir.tensors:
            model_ir.tensors[name] = TensorIR(name=name, dtype=t.dtype, shape=list(t.shape))


def lower_qnn_softmax(
    op: OperatorIR,
    model_ir: ModelIR,
    constants: Optional[AlgorithmConstants] = None,
    shift_guard: Optional[ShiftGuard] = None,
    reserved_names: Optional[Iterable[str]] = None,
) -> SoftmaxLowering:
    """Lower one qnn.softmax operator of `model_ir` into a standalone fragment.

    The host graph is only read. The fragment takes the node's non-constant
    operands as inputs and produces the node's output tensor.
    """
    descriptor = resolve_operator(op)
    name = node_label(op)
    relation = infer_node_types(op, model_ir)
    if relation.state == RelationState.UNRESOLVED:
        raise QnnSoftmaxError(
            reason_code="unresolved_types",
            message="operand types are not fully known, run type inference first",
            node_name=name,
        )
    relation.raise_if_rejected()

    fragment = ModelIR(name=f"{name}_lowered")
    for tensor_name, t in zip(op.inputs, relation.types):
        src = model_ir.tensors.get(tensor_name, None)
        fragment.tensors[tensor_name] = TensorIR(
            name=tensor_name,
            dtype=t.dtype,
            shape=list(t.shape),
            data=src.data if src is not None else None,
        )
    fragment.inputs = [n for n in op.inputs if fragment.tensors[n].data is None]
    fragment.outputs = [op.outputs[0]]

    ctx = LoweringContext(fragment, reserved_names=reserved_names)
    info = descriptor.builder(op, ctx, constants=constants, shift_guard=shift_guard)
    return SoftmaxLowering(
        fragment=fragment,
        x0=int(info["x0"]),
        axis=int(info["axis"]),
        shift_guarded=bool(info["shift_guarded"]),
        stages=dict(info["stages"]),
    )


def canonicalize_model_ir(
    model_ir: ModelIR,
    constants: Optional[AlgorithmConstants] = None,
    shift_guard: Optional[ShiftGuard] = None,
) -> Tuple[ModelIR, Dict[str, Any]]:
    """Replace every qnn.softmax in a copy of `model_ir` by its integer fragment.

    A node is replaced only when its whole fragment was built. Nodes whose
    types are still unresolved or whose lowering failed stay in the graph and
    are listed in the report.
    """
    working = clone_model_ir(model_ir)
    reserved = set(working.tensors.keys())
    new_operators: List[OperatorIR] = []
    nodes: List[Dict[str, Any]] = []

    for op in working.operators:
        if get_operator_descriptor(op.op_type) is None:
            new_operators.append(op)
            continue
        name = node_label(op)
        try:
            relation = infer_node_types(op, working)
            if relation.state == RelationState.UNRESOLVED:
                warn(f"qnn.softmax {name}: operand types unresolved, node left in place.")
                nodes.append({"node_name": name, "status": "unresolved"})
                new_operators.append(op)
                continue
            relation.raise_if_rejected()
            apply_resolved_types(working, op, relation.types)
            lowering = lower_qnn_softmax(
                op,
                working,
                constants=constants,
                shift_guard=shift_guard,
                reserved_names=reserved,
            )
        except QnnSoftmaxError as ex:
            warn(f"qnn.softmax {name}: lowering failed, node left in place. {ex}")
            nodes.append({"node_name": name, "status": "failed", "error": ex.to_dict()})
            new_operators.append(op)
            continue

        for tensor_name, tensor in lowering.fragment.tensors.items():
            if tensor_name in op.inputs:
                continue
            working.tensors[tensor_name] = tensor
            reserved.add(tensor_name)
        new_operators.extend(lowering.fragment.operators)
        debug(Color.GREEN("lowered"), f"qnn.softmax {name}")
        nodes.append(
            {
                "node_name": name,
                "status": "lowered",
                "op_count": int(len(lowering.fragment.operators)),
                "x0": int(lowering.x0),
                "axis": int(lowering.axis),
                "shift_guarded": bool(lowering.shift_guarded),
            }
        )

    working.operators = new_operators
    report = {
        "schema_version": 1,
        "model_name": model_ir.name,
        "nodes": nodes,
        "summary": {
            "total_nodes": int(len(nodes)),
            "lowered_nodes": int(len([n for n in nodes if n["status"] == "lowered"])),
            "unresolved_nodes": int(len([n for n in nodes if n["status"] == "unresolved"])),
            "failed_nodes": int(len([n for n in nodes if n["status"] == "failed"])),
        },
    }
    return working, report
