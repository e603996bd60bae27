from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np

from qsoftmax.utils.enums import IR_DTYPES_TO_NUMPY_DTYPES, NUMPY_DTYPES_TO_IR_DTYPES


Dim = Union[int, str]


@dataclass(frozen=True)
class TensorTypeIR:
    shape: Tuple[Dim, ...]
    dtype: str

    @property
    def rank(self) -> int:
        return len(self.shape)

    def is_scalar(self) -> bool:
        return len(self.shape) == 0

    def describe(self) -> str:
        return f"{self.dtype}[{', '.join(str(d) for d in self.shape)}]"


@dataclass(frozen=True)
class IncompleteTypeIR:
    """Placeholder for a type slot that inference has not resolved yet."""
    hint: str = ""

    def describe(self) -> str:
        return f"?{self.hint}" if self.hint else "?"


TypeIR = Union[TensorTypeIR, IncompleteTypeIR]


@dataclass
class TensorIR:
    name: str
    dtype: str
    shape: List[Dim]
    data: Optional[np.ndarray] = None

    def to_type(self) -> TensorTypeIR:
        return TensorTypeIR(shape=tuple(self.shape), dtype=self.dtype)


@dataclass
class OperatorIR:
    op_type: str
    inputs: List[str]
    outputs: List[str]
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ModelIR:
    name: str
    description: str = "qsoftmax integer lowering"
    tensors: Dict[str, TensorIR] = field(default_factory=dict)
    operators: List[OperatorIR] = field(default_factory=list)
    inputs: List[str] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)


def ir_dtype_from_numpy(np_dtype: np.dtype) -> str:
    np_dtype = np.dtype(np_dtype)
    if np_dtype not in NUMPY_DTYPES_TO_IR_DTYPES:
        raise NotImplementedError(f"Unsupported numpy dtype for qsoftmax IR: {np_dtype}")
    return NUMPY_DTYPES_TO_IR_DTYPES[np_dtype]


def numpy_dtype_from_ir_dtype(dtype: str) -> np.dtype:
    dt = str(dtype).upper()
    if dt not in IR_DTYPES_TO_NUMPY_DTYPES:
        raise NotImplementedError(f"Unsupported IR dtype: {dtype}")
    return IR_DTYPES_TO_NUMPY_DTYPES[dt]


def normalize_dim(dim: Any) -> Dim:
    if isinstance(dim, (int, np.integer)) and int(dim) >= 0:
        return int(dim)
    if isinstance(dim, str) and dim != "":
        return dim
    return "?"


def normalize_shape(shape: Optional[List[Any]]) -> Optional[List[Dim]]:
    if shape is None:
        return None
    return [normalize_dim(dim) for dim in shape]


def reduced_shape(shape: List[Dim], axis: int) -> List[Dim]:
    out = list(shape)
    out[int(axis)] = 1
    return out


def clone_model_ir(model_ir: ModelIR) -> ModelIR:
    clone = ModelIR(
        name=model_ir.name,
        description=model_ir.description,
    )
    clone.inputs = list(model_ir.inputs)
    clone.outputs = list(model_ir.outputs)
    clone.operators = [
        OperatorIR(
            op_type=op.op_type,
            inputs=list(op.inputs),
            outputs=list(op.outputs),
            options=dict(op.options),
        )
        for op in model_ir.operators
    ]
    for name, tensor in model_ir.tensors.items():
        clone.tensors[name] = TensorIR(
            name=tensor.name,
            dtype=tensor.dtype,
            shape=list(tensor.shape),
            data=tensor.data.copy() if isinstance(tensor.data, np.ndarray) else tensor.data,
        )
    return clone
