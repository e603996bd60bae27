import numpy as np
import onnx
import pytest
from onnx import helper, numpy_helper

from qsoftmax.lowering.errors import NodeValidationError, TypeContractViolation
from qsoftmax.lowering.lower_from_onnx import lower_onnx_to_ir


def _make_qlinear_softmax_model(
    *,
    x_elem_type: int = onnx.TensorProto.INT8,
    x_shape=(1, 4),
    zero_point_dtype=np.int8,
    with_y_zero_point: bool = True,
    axis=None,
) -> onnx.ModelProto:
    x = helper.make_tensor_value_info("x", x_elem_type, list(x_shape) if x_shape is not None else None)
    y = helper.make_tensor_value_info("y", x_elem_type, list(x_shape) if x_shape is not None else None)
    initializers = [
        numpy_helper.from_array(np.asarray(1.0 / 16.0, dtype=np.float32), name="x_scale"),
        numpy_helper.from_array(np.asarray(3, dtype=zero_point_dtype), name="x_zero_point"),
        numpy_helper.from_array(np.asarray([1.0 / 256.0], dtype=np.float32), name="y_scale"),
    ]
    inputs = ["x", "x_scale", "x_zero_point", "y_scale"]
    if with_y_zero_point:
        initializers.append(
            numpy_helper.from_array(np.asarray(-128, dtype=np.int8), name="y_zero_point")
        )
        inputs.append("y_zero_point")
    attrs = {} if axis is None else {"axis": axis}
    node = helper.make_node(
        "QLinearSoftmax",
        inputs,
        ["y"],
        name="QLinearSoftmaxNode",
        domain="com.microsoft",
        **attrs,
    )
    graph = helper.make_graph([node], "qlinear_softmax_graph", [x], [y], initializer=initializers)
    return helper.make_model(
        graph,
        opset_imports=[
            helper.make_operatorsetid("", 13),
            helper.make_operatorsetid("com.microsoft", 1),
        ],
    )


def test_qlinear_softmax_is_imported_as_qnn_softmax() -> None:
    model_ir = lower_onnx_to_ir(_make_qlinear_softmax_model(axis=1), output_file_name="m")

    assert model_ir.name == "m"
    assert model_ir.inputs == ["x"]
    assert model_ir.outputs == ["y"]
    assert len(model_ir.operators) == 1
    op = model_ir.operators[0]
    assert op.op_type == "qnn.softmax"
    assert op.inputs == ["x", "x_scale", "x_zero_point", "y_scale", "y_zero_point"]
    assert op.options == {"axis": 1, "name": "QLinearSoftmaxNode"}

    x_scale = model_ir.tensors["x_scale"]
    assert x_scale.dtype == "FLOAT32"
    assert x_scale.shape == []
    y_scale = model_ir.tensors["y_scale"]
    assert y_scale.shape == []
    zero_point = model_ir.tensors["x_zero_point"]
    assert zero_point.dtype == "INT32"
    assert int(zero_point.data) == 3
    assert model_ir.tensors["y"].dtype == "INT8"
    assert model_ir.tensors["y"].shape == [1, 4]


def test_axis_defaults_to_last_dimension() -> None:
    model_ir = lower_onnx_to_ir(_make_qlinear_softmax_model())

    assert model_ir.operators[0].options["axis"] == -1


def test_uint8_zero_point_is_widened() -> None:
    model_ir = lower_onnx_to_ir(_make_qlinear_softmax_model(zero_point_dtype=np.uint8))

    assert model_ir.tensors["x_zero_point"].dtype == "INT32"
    assert model_ir.tensors["x_zero_point"].data.dtype == np.int32


def test_omitted_output_zero_point_defaults_to_zero() -> None:
    model_ir = lower_onnx_to_ir(_make_qlinear_softmax_model(with_y_zero_point=False))

    y_zero_name = model_ir.operators[0].inputs[4]
    assert y_zero_name == "QLinearSoftmaxNode_y_zero_point"
    assert model_ir.tensors[y_zero_name].dtype == "INT32"
    assert int(model_ir.tensors[y_zero_name].data) == 0


def test_uint8_input_is_rejected() -> None:
    with pytest.raises(TypeContractViolation) as ex:
        lower_onnx_to_ir(_make_qlinear_softmax_model(x_elem_type=onnx.TensorProto.UINT8))

    assert ex.value.reason_code == "unsupported_input_dtype"
    assert ex.value.node_name == "QLinearSoftmaxNode"


def test_unsupported_onnx_op_is_rejected() -> None:
    x = helper.make_tensor_value_info("x", onnx.TensorProto.FLOAT, [1, 4])
    y = helper.make_tensor_value_info("y", onnx.TensorProto.FLOAT, [1, 4])
    node = helper.make_node("Softmax", ["x"], ["y"], name="FloatSoftmax")
    graph = helper.make_graph([node], "float_softmax_graph", [x], [y])
    model = helper.make_model(graph, opset_imports=[helper.make_operatorsetid("", 13)])

    with pytest.raises(NodeValidationError) as ex:
        lower_onnx_to_ir(model)

    assert ex.value.reason_code == "unsupported_onnx_op"
    assert ex.value.node_op == "Softmax"


def test_missing_input_shape_is_unresolved() -> None:
    with pytest.raises(NodeValidationError) as ex:
        lower_onnx_to_ir(_make_qlinear_softmax_model(x_shape=None))

    assert ex.value.reason_code == "unresolved_types"


def test_unsupported_tensor_dtype_is_reported() -> None:
    with pytest.raises(NodeValidationError) as ex:
        lower_onnx_to_ir(_make_qlinear_softmax_model(x_elem_type=onnx.TensorProto.STRING))

    assert ex.value.reason_code == "unsupported_dtype"
    assert "tensor=x" in ex.value.message
