from __future__ import annotations

from typing import Iterable, List, Optional

import numpy as np

from qsoftmax.lowering.ir import (
    Dim,
    ModelIR,
    OperatorIR,
    TensorIR,
    ir_dtype_from_numpy,
    normalize_shape,
)


class LoweringContext:
    def __init__(
        self,
        model_ir: ModelIR,
        reserved_names: Optional[Iterable[str]] = None,
    ):
        self.model_ir = model_ir
        self.reserved_names = set(reserved_names) if reserved_names is not None else set()
        self._serial = 0

    def _next_name(self, base: str) -> str:
        self._serial += 1
        return f"{base}_{self._serial}"

    def _unique_name(self, base: str) -> str:
        name = base
        while name in self.model_ir.tensors or name in self.reserved_names:
            name = self._next_name(base)
        return name

    def get_tensor_shape(self, name: str) -> List[Dim]:
        if name not in self.model_ir.tensors:
            raise KeyError(f"Unknown tensor in lowering context: {name}")
        return list(self.model_ir.tensors[name].shape)

    def get_tensor_dtype(self, name: str) -> str:
        if name not in self.model_ir.tensors:
            raise KeyError(f"Unknown tensor in lowering context: {name}")
        return self.model_ir.tensors[name].dtype

    def get_constant_array(self, name: str) -> Optional[np.ndarray]:
        t = self.model_ir.tensors.get(name, None)
        if t is not None and isinstance(t.data, np.ndarray):
            return t.data
        return None

    def ensure_tensor(self, name: str, dtype: str, shape: List[Dim]) -> str:
        if name == "":
            raise ValueError("Tensor name must not be empty in qsoftmax lowering.")
        if name in self.model_ir.tensors:
            return name
        self.model_ir.tensors[name] = TensorIR(
            name=name,
            dtype=dtype,
            shape=list(normalize_shape(shape)),
        )
        return name

    def add_const_tensor(self, base_name: str, data: np.ndarray) -> str:
        name = self._unique_name(base_name)
        data = np.asarray(data)
        self.model_ir.tensors[name] = TensorIR(
            name=name,
            dtype=ir_dtype_from_numpy(data.dtype),
            shape=[int(v) for v in data.shape],
            data=data,
        )
        return name

    def add_intermediate_tensor(self, base_name: str, dtype: str, shape: List[Dim]) -> str:
        if base_name == "":
            raise ValueError("Tensor name must not be empty in qsoftmax lowering.")
        name = self._unique_name(base_name)
        self.model_ir.tensors[name] = TensorIR(
            name=name,
            dtype=dtype,
            shape=list(shape),
            data=None,
        )
        return name

    def add_operator(self, op: OperatorIR) -> None:
        self.model_ir.operators.append(op)
