from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from qsoftmax.lowering.errors import NodeValidationError
from qsoftmax.lowering.ir import OperatorIR
from qsoftmax.lowering.op_builders import build_qnn_softmax_op, node_label
from qsoftmax.lowering.type_relation import qnn_softmax_type_relation


@dataclass(frozen=True)
class ArgumentSpec:
    name: str
    type_info: str
    description: str


@dataclass(frozen=True)
class OperatorDescriptor:
    """Everything a host needs to type and canonicalize one operator.

    Hosts call `type_relation` during type inference and `builder` during
    canonicalization. Nothing is registered into a host on import.
    """
    name: str
    description: str
    arguments: List[ArgumentSpec]
    type_relation: Callable[..., Any]
    builder: Callable[..., Dict[str, Any]]
    default_attrs: Dict[str, Any] = field(default_factory=dict)
    support_level: int = 0
    non_computational: bool = True

    @property
    def num_inputs(self) -> int:
        return len(self.arguments)


QNN_SOFTMAX = OperatorDescriptor(
    name="qnn.softmax",
    description="Softmax for quantized tensors.",
    arguments=[
        ArgumentSpec("data", "Quantized Tensor", "The input data."),
        ArgumentSpec("scale", "Tensor", "The quantization scale of the input tensor."),
        ArgumentSpec("zero_point", "Tensor", "The quantization zero_point of the input tensor."),
        ArgumentSpec("output_scale", "Tensor", "The quantization scale of the output tensor."),
        ArgumentSpec(
            "output_zero_point",
            "Tensor",
            "The quantization zero_point of the output tensor.",
        ),
    ],
    type_relation=qnn_softmax_type_relation,
    builder=build_qnn_softmax_op,
    default_attrs={"axis": -1},
    support_level=11,
    non_computational=True,
)


_OPERATOR_DESCRIPTORS: Dict[str, OperatorDescriptor] = {
    QNN_SOFTMAX.name: QNN_SOFTMAX,
}


def get_operator_descriptors() -> Dict[str, OperatorDescriptor]:
    return dict(_OPERATOR_DESCRIPTORS)


def get_operator_descriptor(op_type: str) -> Optional[OperatorDescriptor]:
    return _OPERATOR_DESCRIPTORS.get(str(op_type))


def get_supported_ops() -> List[str]:
    return sorted(_OPERATOR_DESCRIPTORS.keys())


def make_qnn_softmax(
    *,
    data: str,
    scale: str,
    zero_point: str,
    output_scale: str,
    output_zero_point: str,
    output: str,
    axis: int = -1,
    name: str = "",
) -> OperatorIR:
    options: Dict[str, Any] = {"axis": int(axis)}
    if name:
        options["name"] = str(name)
    return OperatorIR(
        op_type=QNN_SOFTMAX.name,
        inputs=[data, scale, zero_point, output_scale, output_zero_point],
        outputs=[output],
        options=options,
    )


def resolve_operator(op: OperatorIR) -> OperatorDescriptor:
    descriptor = get_operator_descriptor(op.op_type)
    if descriptor is None:
        raise NodeValidationError(
            reason_code="unsupported_op",
            message=f"op is not handled by qsoftmax: {op.op_type}",
            node_name=node_label(op),
            node_op=op.op_type,
        )
    if len(op.inputs) != descriptor.num_inputs:
        raise NodeValidationError(
            reason_code="invalid_input_count",
            message=f"input_count={len(op.inputs)} must be {descriptor.num_inputs}",
            node_name=node_label(op),
            node_op=op.op_type,
        )
    if len(op.outputs) != 1:
        raise NodeValidationError(
            reason_code="invalid_output_count",
            message=f"output_count={len(op.outputs)} must be 1",
            node_name=node_label(op),
            node_op=op.op_type,
        )
    return descriptor
