from __future__ import annotations

from typing import Any, Dict, Optional


class QnnSoftmaxError(ValueError):
    def __init__(
        self,
        *,
        reason_code: str,
        message: str,
        node_name: str = "",
        node_op: str = "qnn.softmax",
    ) -> None:
        super().__init__(message)
        self.reason_code = str(reason_code)
        self.node_name = str(node_name)
        self.node_op = str(node_op)
        self.message = str(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "node_name": self.node_name,
            "node_op": self.node_op,
            "reason_code": self.reason_code,
            "message": self.message,
        }


class TypeContractViolation(QnnSoftmaxError):
    """Fatal mismatch between an operand type and the quantized softmax contract."""

    def __init__(
        self,
        *,
        reason_code: str,
        message: str,
        slot_index: Optional[int] = None,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
        node_name: str = "",
        node_op: str = "qnn.softmax",
    ) -> None:
        super().__init__(
            reason_code=reason_code,
            message=message,
            node_name=node_name,
            node_op=node_op,
        )
        self.slot_index = slot_index
        self.expected = expected
        self.actual = actual

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["slot_index"] = self.slot_index
        d["expected"] = self.expected
        d["actual"] = self.actual
        return d


class NumericPreconditionViolation(QnnSoftmaxError):
    """An integer intermediate left the range the fixed-point algorithm is defined on."""

    def __init__(
        self,
        *,
        reason_code: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        node_name: str = "",
        node_op: str = "qnn.softmax",
    ) -> None:
        super().__init__(
            reason_code=reason_code,
            message=message,
            node_name=node_name,
            node_op=node_op,
        )
        self.context = dict(context) if context is not None else {}

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["context"] = {k: _jsonable(v) for k, v in self.context.items()}
        return d


class NodeValidationError(QnnSoftmaxError):
    """Raised by the ONNX front end for graphs it cannot import."""


def _jsonable(value: Any) -> Any:
    if hasattr(value, "tolist"):
        return value.tolist()
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
