import pytest

from qsoftmax.lowering.errors import TypeContractViolation
from qsoftmax.lowering.ir import IncompleteTypeIR, TensorTypeIR
from qsoftmax.lowering.type_relation import (
    RelationState,
    normalize_axis,
    qnn_softmax_type_relation,
    shapes_match,
)


def _scalar(dtype: str) -> TensorTypeIR:
    return TensorTypeIR(shape=(), dtype=dtype)


def _make_types(input_type, output_type=None, **overrides):
    types = [
        input_type,
        _scalar("FLOAT32"),
        _scalar("INT32"),
        _scalar("FLOAT32"),
        _scalar("INT32"),
        output_type if output_type is not None else IncompleteTypeIR(hint="y"),
    ]
    for index, t in overrides.items():
        types[int(index.split("_")[1])] = t
    return types


def test_relation_resolves_output_from_input_shape() -> None:
    result = qnn_softmax_type_relation(
        _make_types(TensorTypeIR(shape=(2, 3), dtype="INT8")),
        {"axis": 1},
    )

    assert result.state == RelationState.RESOLVED
    assert result.resolved
    assert result.error is None
    assert result.types[5] == TensorTypeIR(shape=(2, 3), dtype="INT8")
    assert result.types[1] == _scalar("FLOAT32")
    assert result.types[4] == _scalar("INT32")


def test_relation_keeps_concrete_output_dtype() -> None:
    result = qnn_softmax_type_relation(
        _make_types(
            TensorTypeIR(shape=(4,), dtype="INT8"),
            TensorTypeIR(shape=(4,), dtype="INT16"),
        ),
    )

    assert result.state == RelationState.RESOLVED
    assert result.types[5].dtype == "INT16"


def test_relation_defers_while_input_is_placeholder() -> None:
    types = _make_types(IncompleteTypeIR(hint="x"))

    result = qnn_softmax_type_relation(types)

    assert result.state == RelationState.UNRESOLVED
    assert result.types == tuple(types)
    result.raise_if_rejected()


def test_relation_defers_while_quant_param_is_placeholder() -> None:
    types = _make_types(
        TensorTypeIR(shape=(3,), dtype="INT8"),
        slot_3=IncompleteTypeIR(hint="y_scale"),
    )

    result = qnn_softmax_type_relation(types)

    assert result.state == RelationState.UNRESOLVED
    assert isinstance(result.types[5], IncompleteTypeIR)


def test_relation_rejects_uint8_input() -> None:
    result = qnn_softmax_type_relation(
        _make_types(TensorTypeIR(shape=(3,), dtype="UINT8")),
        node_name="softmax",
    )

    assert result.state == RelationState.REJECTED
    assert result.error.reason_code == "unsupported_input_dtype"
    assert result.error.slot_index == 0
    assert result.error.expected == "INT8"
    assert result.error.node_name == "softmax"
    with pytest.raises(TypeContractViolation):
        result.raise_if_rejected()


def test_relation_rejects_non_scalar_scale() -> None:
    result = qnn_softmax_type_relation(
        _make_types(
            TensorTypeIR(shape=(3,), dtype="INT8"),
            slot_1=TensorTypeIR(shape=(2,), dtype="FLOAT32"),
        ),
    )

    assert result.state == RelationState.REJECTED
    assert result.error.reason_code == "invalid_quantization_param"
    assert result.error.slot_index == 1
    assert result.error.expected == "FLOAT32[]"
    assert result.error.actual == "FLOAT32[2]"


def test_relation_rejects_mistyped_zero_point() -> None:
    result = qnn_softmax_type_relation(
        _make_types(
            TensorTypeIR(shape=(3,), dtype="INT8"),
            slot_4=_scalar("FLOAT32"),
        ),
    )

    assert result.state == RelationState.REJECTED
    assert result.error.slot_index == 4


@pytest.mark.parametrize("axis", [2, -3])
def test_relation_rejects_axis_out_of_range(axis: int) -> None:
    result = qnn_softmax_type_relation(
        _make_types(TensorTypeIR(shape=(2, 3), dtype="INT8")),
        {"axis": axis},
    )

    assert result.state == RelationState.REJECTED
    assert result.error.reason_code == "axis_out_of_range"
    assert result.error.slot_index == 0


def test_relation_rejects_output_shape_mismatch() -> None:
    result = qnn_softmax_type_relation(
        _make_types(
            TensorTypeIR(shape=(2, 3), dtype="INT8"),
            TensorTypeIR(shape=(3, 2), dtype="INT8"),
        ),
    )

    assert result.state == RelationState.REJECTED
    assert result.error.reason_code == "output_shape_mismatch"
    assert result.error.slot_index == 5


def test_relation_accepts_symbolic_dims() -> None:
    result = qnn_softmax_type_relation(
        _make_types(
            TensorTypeIR(shape=("N", 10), dtype="INT8"),
            TensorTypeIR(shape=("?", 10), dtype="INT8"),
        ),
    )

    assert result.state == RelationState.RESOLVED


def test_relation_rejects_wrong_slot_count() -> None:
    types = _make_types(TensorTypeIR(shape=(3,), dtype="INT8"))[:5]

    result = qnn_softmax_type_relation(types)

    assert result.state == RelationState.REJECTED
    assert result.error.reason_code == "invalid_type_count"
    assert result.error.slot_index is None


def test_normalize_axis_and_shapes_match() -> None:
    assert normalize_axis(-1, 3) == 2
    assert normalize_axis(0, 1) == 0
    assert normalize_axis(3, 3) is None
    assert normalize_axis(0, 0) is None
    assert shapes_match([1, "?"], [1, 5])
    assert not shapes_match([1, 2], [1, 2, 3])


def test_relation_accepts_symbolic_input_against_concrete_output() -> None:
    result = qnn_softmax_type_relation(
        _make_types(
            TensorTypeIR(shape=("N", 10), dtype="INT8"),
            TensorTypeIR(shape=(3, 10), dtype="INT8"),
        ),
    )

    assert result.state == RelationState.RESOLVED
    assert shapes_match(["batch", 3], [7, 3])
    assert not shapes_match(["batch", 3], [7, 4])
