import numpy as np

from qsoftmax.lowering.canonicalize import (
    canonicalize_model_ir,
    infer_node_types,
    lower_qnn_softmax,
)
from qsoftmax.lowering.constants import ShiftGuard
from qsoftmax.lowering.interpreter import run_model_ir
from qsoftmax.lowering.ir import ModelIR, TensorIR
from qsoftmax.lowering.op_registry import make_qnn_softmax
from qsoftmax.lowering.type_relation import RelationState


def _add_quant_params(model_ir: ModelIR, *, x_scale: float) -> None:
    for name, dtype, value in [
        ("x_scale", "FLOAT32", np.asarray(x_scale, dtype=np.float32)),
        ("x_zero", "INT32", np.asarray(0, dtype=np.int32)),
        ("y_scale", "FLOAT32", np.asarray(1.0 / 256.0, dtype=np.float32)),
        ("y_zero", "INT32", np.asarray(-128, dtype=np.int32)),
    ]:
        model_ir.tensors[name] = TensorIR(name=name, dtype=dtype, shape=[], data=value)


def _make_softmax(data: str, output: str, name: str = ""):
    return make_qnn_softmax(
        data=data,
        scale="x_scale",
        zero_point="x_zero",
        output_scale="y_scale",
        output_zero_point="y_zero",
        output=output,
        axis=-1,
        name=name,
    )


def _make_model(*, x_scale: float = 1.0 / 64.0, chained: bool = False) -> ModelIR:
    model_ir = ModelIR(name="softmax_graph")
    model_ir.tensors["x"] = TensorIR(name="x", dtype="INT8", shape=[2, 5])
    _add_quant_params(model_ir, x_scale=x_scale)
    model_ir.operators.append(_make_softmax("x", "y", name="softmax_0"))
    model_ir.inputs = ["x"]
    model_ir.outputs = ["y"]
    if chained:
        model_ir.operators.append(_make_softmax("y", "z"))
        model_ir.outputs = ["z"]
    return model_ir


def test_canonicalize_replaces_softmax_with_fragment() -> None:
    model_ir = _make_model()

    lowered_ir, report = canonicalize_model_ir(model_ir)

    assert "qnn.softmax" not in [o.op_type for o in lowered_ir.operators]
    assert [o.op_type for o in model_ir.operators] == ["qnn.softmax"]
    assert report["schema_version"] == 1
    assert report["model_name"] == "softmax_graph"
    assert report["summary"] == {
        "total_nodes": 1,
        "lowered_nodes": 1,
        "unresolved_nodes": 0,
        "failed_nodes": 0,
    }
    node = report["nodes"][0]
    assert node["node_name"] == "softmax_0"
    assert node["status"] == "lowered"
    assert node["x0"] == 64
    assert node["axis"] == 1
    assert node["op_count"] == len(lowered_ir.operators)
    assert lowered_ir.tensors["y"].dtype == "INT8"

    x = np.asarray([[1, 2, 3, 4, 5], [-50, 0, 50, 0, -50]], dtype=np.int8)
    lowering = lower_qnn_softmax(model_ir.operators[0], model_ir)
    np.testing.assert_array_equal(
        run_model_ir(lowered_ir, {"x": x})["y"],
        run_model_ir(lowering.fragment, {"x": x})["y"],
    )


def test_canonicalize_chained_softmax_keeps_names_unique() -> None:
    model_ir = _make_model(chained=True)

    lowered_ir, report = canonicalize_model_ir(model_ir)

    assert report["summary"]["lowered_nodes"] == 2
    assert [n["node_name"] for n in report["nodes"]] == ["softmax_0", "z"]
    outputs = [o.outputs[0] for o in lowered_ir.operators]
    assert len(outputs) == len(set(outputs))
    z = run_model_ir(lowered_ir, {"x": np.zeros((2, 5), dtype=np.int8)})["z"]
    assert z.shape == (2, 5)
    assert z.dtype == np.int8


def test_canonicalize_keeps_failed_node_in_place() -> None:
    model_ir = _make_model(x_scale=4.0)

    lowered_ir, report = canonicalize_model_ir(model_ir)

    assert [o.op_type for o in lowered_ir.operators] == ["qnn.softmax"]
    assert report["summary"]["failed_nodes"] == 1
    node = report["nodes"][0]
    assert node["status"] == "failed"
    assert node["error"]["error_type"] == "NumericPreconditionViolation"
    assert node["error"]["reason_code"] == "zero_reciprocal_scale"
    assert node["error"]["node_name"] == "softmax_0"


def test_canonicalize_strict_guard_reports_failure() -> None:
    model_ir = _make_model(x_scale=1.0)

    _, report = canonicalize_model_ir(model_ir, shift_guard=ShiftGuard.STRICT)

    assert report["nodes"][0]["error"]["reason_code"] == "negative_shift_amount"
    assert report["nodes"][0]["error"]["context"]["x0"] == 1


def test_canonicalize_reports_unresolved_node() -> None:
    model_ir = _make_model()
    del model_ir.tensors["x"]

    lowered_ir, report = canonicalize_model_ir(model_ir)

    assert infer_node_types(model_ir.operators[0], model_ir).state == RelationState.UNRESOLVED
    assert report["nodes"] == [{"node_name": "softmax_0", "status": "unresolved"}]
    assert report["summary"]["unresolved_nodes"] == 1
    assert [o.op_type for o in lowered_ir.operators] == ["qnn.softmax"]
