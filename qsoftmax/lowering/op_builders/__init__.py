from qsoftmax.lowering.op_builders.softmax import (
    build_qnn_softmax_op,
    node_label,
    reciprocal_scale,
)

__all__ = [
    "build_qnn_softmax_op",
    "node_label",
    "reciprocal_scale",
]
