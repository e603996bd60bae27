from __future__ import annotations

from qsoftmax.lowering.canonicalize import (
    SoftmaxLowering,
    canonicalize_model_ir,
    infer_node_types,
    lower_qnn_softmax,
)
from qsoftmax.lowering.constants import (
    DEFAULT_ALGORITHM_CONSTANTS,
    AlgorithmConstants,
    ShiftGuard,
)
from qsoftmax.lowering.errors import (
    NodeValidationError,
    NumericPreconditionViolation,
    QnnSoftmaxError,
    TypeContractViolation,
)
from qsoftmax.lowering.interpreter import run_model_ir
from qsoftmax.lowering.op_registry import (
    QNN_SOFTMAX,
    OperatorDescriptor,
    get_operator_descriptor,
    make_qnn_softmax,
)
from qsoftmax.lowering.type_relation import (
    RelationState,
    TypeRelationResult,
    qnn_softmax_type_relation,
)

__all__ = [
    "DEFAULT_ALGORITHM_CONSTANTS",
    "QNN_SOFTMAX",
    "AlgorithmConstants",
    "NodeValidationError",
    "NumericPreconditionViolation",
    "OperatorDescriptor",
    "QnnSoftmaxError",
    "RelationState",
    "ShiftGuard",
    "SoftmaxLowering",
    "TypeContractViolation",
    "TypeRelationResult",
    "canonicalize_model_ir",
    "get_operator_descriptor",
    "infer_node_types",
    "lower_qnn_softmax",
    "make_qnn_softmax",
    "qnn_softmax_type_relation",
    "run_model_ir",
]
