from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import onnx
from onnx import numpy_helper

from qsoftmax.lowering.errors import NodeValidationError
from qsoftmax.lowering.canonicalize import apply_resolved_types, infer_node_types
from qsoftmax.lowering.ir import (
    Dim,
    ModelIR,
    OperatorIR,
    TensorIR,
    ir_dtype_from_numpy,
    normalize_dim,
)
from qsoftmax.lowering.op_builders import node_label
from qsoftmax.lowering.op_registry import make_qnn_softmax
from qsoftmax.lowering.type_relation import RelationState
from qsoftmax.utils.enums import ONNX_DTYPES_TO_IR_DTYPES
from qsoftmax.utils.logging import debug, info


_QLINEAR_SOFTMAX_OPS = {
    ("com.microsoft", "QLinearSoftmax"),
}


def _dtype_from_onnx_elem_type(elem_type: int, tensor_name: str = "") -> str:
    if elem_type not in ONNX_DTYPES_TO_IR_DTYPES:
        raise NodeValidationError(
            reason_code="unsupported_dtype",
            message=f"Unsupported ONNX dtype in qsoftmax: elem_type={elem_type} tensor={tensor_name}",
            node_op="QLinearSoftmax",
        )
    return ONNX_DTYPES_TO_IR_DTYPES[elem_type]


def _extract_tensor_info(
    onnx_graph: onnx.ModelProto,
) -> Tuple[Dict[str, List[Dim]], Dict[str, str]]:
    shape_map: Dict[str, List[Dim]] = {}
    dtype_map: Dict[str, str] = {}

    def _fill_value_info(value_info):
        if not value_info.type.HasField("tensor_type"):
            return
        tensor_type = value_info.type.tensor_type
        if tensor_type.elem_type == onnx.TensorProto.UNDEFINED:
            return
        if not tensor_type.HasField("shape"):
            return
        dims: List[Dim] = []
        for d in tensor_type.shape.dim:
            if d.HasField("dim_value"):
                dims.append(normalize_dim(int(d.dim_value)))
            elif d.HasField("dim_param"):
                dims.append(normalize_dim(str(d.dim_param)))
            else:
                dims.append("?")
        shape_map[value_info.name] = dims
        dtype_map[value_info.name] = _dtype_from_onnx_elem_type(tensor_type.elem_type, value_info.name)

    for vi in onnx_graph.graph.input:
        _fill_value_info(vi)
    for vi in onnx_graph.graph.value_info:
        _fill_value_info(vi)
    for vi in onnx_graph.graph.output:
        _fill_value_info(vi)
    return shape_map, dtype_map


def _extract_constants(onnx_graph: onnx.ModelProto) -> Dict[str, np.ndarray]:
    constants: Dict[str, np.ndarray] = {}
    for ini in onnx_graph.graph.initializer:
        constants[ini.name] = np.asarray(numpy_helper.to_array(ini))
    for node in onnx_graph.graph.node:
        if node.op_type != "Constant" or len(node.output) != 1:
            continue
        for a in node.attribute:
            if a.name == "value" and a.type == onnx.AttributeProto.TENSOR:
                constants[node.output[0]] = np.asarray(numpy_helper.to_array(a.t))
    return constants


def _infer_shapes_with_fallback(onnx_graph: onnx.ModelProto) -> onnx.ModelProto:
    try:
        return onnx.shape_inference.infer_shapes(onnx_graph)
    except Exception:
        return onnx_graph


def _node_attrs(node: onnx.NodeProto) -> Dict[str, Any]:
    attrs: Dict[str, Any] = {}
    for a in node.attribute:
        if a.type == onnx.AttributeProto.INT:
            attrs[a.name] = int(a.i)
        elif a.type == onnx.AttributeProto.FLOAT:
            attrs[a.name] = float(a.f)
        elif a.type == onnx.AttributeProto.INTS:
            attrs[a.name] = [int(v) for v in a.ints]
        elif a.type == onnx.AttributeProto.STRING:
            attrs[a.name] = a.s.decode("utf-8")
    return attrs


def _as_quant_param(value: np.ndarray, kind: str) -> np.ndarray:
    arr = np.asarray(value)
    if kind == "scale":
        arr = arr.astype(np.float32)
    else:
        # uint8/int8 zero points are widened to the int32 operand type
        arr = arr.astype(np.int32)
    if arr.size == 1:
        arr = arr.reshape(())
    return arr


def _register_tensor(
    model_ir: ModelIR,
    name: str,
    shape_map: Dict[str, List[Dim]],
    dtype_map: Dict[str, str],
    constants: Dict[str, np.ndarray],
    quant_kind: Optional[str] = None,
) -> None:
    if name in model_ir.tensors:
        return
    if name in constants:
        data = constants[name]
        if quant_kind is not None:
            data = _as_quant_param(data, quant_kind)
        try:
            dtype = ir_dtype_from_numpy(data.dtype)
        except NotImplementedError as ex:
            raise NodeValidationError(
                reason_code="unsupported_dtype",
                message=f"{ex} tensor={name}",
                node_op="QLinearSoftmax",
            ) from ex
        model_ir.tensors[name] = TensorIR(
            name=name,
            dtype=dtype,
            shape=[int(v) for v in data.shape],
            data=data,
        )
        return
    if name in shape_map and name in dtype_map:
        model_ir.tensors[name] = TensorIR(
            name=name,
            dtype=dtype_map[name],
            shape=list(shape_map[name]),
        )


def _add_default_zero_point(model_ir: ModelIR, base_name: str) -> str:
    name = base_name
    serial = 0
    while name in model_ir.tensors:
        serial += 1
        name = f"{base_name}_{serial}"
    model_ir.tensors[name] = TensorIR(
        name=name,
        dtype="INT32",
        shape=[],
        data=np.asarray(0, dtype=np.int32),
    )
    return name


def _build_model_ir(
    onnx_graph: onnx.ModelProto,
    output_file_name: str,
) -> ModelIR:
    shape_map, dtype_map = _extract_tensor_info(onnx_graph)
    constants = _extract_constants(onnx_graph)
    model_ir = ModelIR(name=output_file_name)

    initializer_names = {ini.name for ini in onnx_graph.graph.initializer}
    for graph_input in onnx_graph.graph.input:
        if graph_input.name in initializer_names:
            continue
        _register_tensor(model_ir, graph_input.name, shape_map, dtype_map, constants)
        model_ir.inputs.append(str(graph_input.name))
    model_ir.outputs = [str(o.name) for o in onnx_graph.graph.output]

    for node in onnx_graph.graph.node:
        if node.op_type == "Constant":
            continue
        name = node.name if node.name else node.op_type
        if (node.domain, node.op_type) not in _QLINEAR_SOFTMAX_OPS:
            raise NodeValidationError(
                reason_code="unsupported_onnx_op",
                message=f"ONNX op is not supported by qsoftmax: {node.domain or 'ai.onnx'}::{node.op_type}",
                node_name=name,
                node_op=node.op_type,
            )
        inputs = list(node.input) + [""] * (5 - len(node.input))
        if len(node.input) > 5 or inputs[0] == "" or inputs[1] == "" or inputs[3] == "":
            raise NodeValidationError(
                reason_code="invalid_input_count",
                message=f"QLinearSoftmax requires X, X_scale and y_scale. inputs={list(node.input)}",
                node_name=name,
                node_op=node.op_type,
            )
        x_name, x_scale_name, x_zero_name, y_scale_name, y_zero_name = inputs
        _register_tensor(model_ir, x_name, shape_map, dtype_map, constants)
        _register_tensor(model_ir, x_scale_name, shape_map, dtype_map, constants, "scale")
        _register_tensor(model_ir, y_scale_name, shape_map, dtype_map, constants, "scale")
        if x_zero_name == "":
            x_zero_name = _add_default_zero_point(model_ir, f"{name}_x_zero_point")
        else:
            _register_tensor(model_ir, x_zero_name, shape_map, dtype_map, constants, "zero_point")
        if y_zero_name == "":
            y_zero_name = _add_default_zero_point(model_ir, f"{name}_y_zero_point")
        else:
            _register_tensor(model_ir, y_zero_name, shape_map, dtype_map, constants, "zero_point")
        _register_tensor(model_ir, node.output[0], shape_map, dtype_map, constants)

        attrs = _node_attrs(node)
        model_ir.operators.append(
            make_qnn_softmax(
                data=x_name,
                scale=x_scale_name,
                zero_point=x_zero_name,
                output_scale=y_scale_name,
                output_zero_point=y_zero_name,
                output=node.output[0],
                axis=int(attrs.get("axis", -1)),
                name=name,
            )
        )
    return model_ir


def _run_type_inference(model_ir: ModelIR) -> List[OperatorIR]:
    """One inference sweep. Returns the nodes that are still unresolved."""
    unresolved: List[OperatorIR] = []
    for op in model_ir.operators:
        relation = infer_node_types(op, model_ir)
        if relation.state == RelationState.UNRESOLVED:
            unresolved.append(op)
            continue
        relation.raise_if_rejected()
        apply_resolved_types(model_ir, op, relation.types)
    return unresolved


def lower_onnx_to_ir(
    onnx_graph: onnx.ModelProto,
    output_file_name: str = "model",
) -> ModelIR:
    """Import QLinearSoftmax nodes of an ONNX model as typed qnn.softmax operators.

    Type inference runs once on the graph as given. Unresolved nodes trigger
    ONNX shape inference and a second sweep; anything still unresolved is an
    error.
    """
    model_ir = _build_model_ir(onnx_graph, output_file_name)
    unresolved = _run_type_inference(model_ir)
    if len(unresolved) > 0:
        info(f"qsoftmax: {len(unresolved)} node(s) unresolved, running ONNX shape inference.")
        model_ir = _build_model_ir(_infer_shapes_with_fallback(onnx_graph), output_file_name)
        unresolved = _run_type_inference(model_ir)
    if len(unresolved) > 0:
        op = unresolved[0]
        raise NodeValidationError(
            reason_code="unresolved_types",
            message=f"operand types of qnn.softmax could not be inferred. inputs={op.inputs}",
            node_name=node_label(op),
            node_op=op.op_type,
        )
    debug(f"qsoftmax: imported {len(model_ir.operators)} qnn.softmax node(s) from {output_file_name}")
    return model_ir
