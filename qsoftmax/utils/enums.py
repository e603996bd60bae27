import numpy as np
from onnx import TensorProto

ONNX_DTYPES_TO_IR_DTYPES = {
    TensorProto.FLOAT16: "FLOAT16",
    TensorProto.FLOAT: "FLOAT32",
    TensorProto.DOUBLE: "FLOAT64",

    TensorProto.UINT8: "UINT8",
    TensorProto.UINT16: "UINT16",
    TensorProto.UINT32: "UINT32",
    TensorProto.UINT64: "UINT64",

    TensorProto.INT8: "INT8",
    TensorProto.INT16: "INT16",
    TensorProto.INT32: "INT32",
    TensorProto.INT64: "INT64",

    TensorProto.BOOL: "BOOL",
}

IR_DTYPES_TO_NUMPY_DTYPES = {
    "FLOAT16": np.dtype('float16'),
    "FLOAT32": np.dtype('float32'),
    "FLOAT64": np.dtype('float64'),

    "UINT8": np.dtype('uint8'),
    "UINT16": np.dtype('uint16'),
    "UINT32": np.dtype('uint32'),
    "UINT64": np.dtype('uint64'),

    "INT8": np.dtype('int8'),
    "INT16": np.dtype('int16'),
    "INT32": np.dtype('int32'),
    "INT64": np.dtype('int64'),

    "BOOL": np.dtype('bool_'),
}

NUMPY_DTYPES_TO_IR_DTYPES = {
    v: k for k, v in IR_DTYPES_TO_NUMPY_DTYPES.items()
}

# Signed integer dtypes addressable as REQUANTIZE targets.
INT_DTYPES_BY_BITS = {
    8: "INT8",
    16: "INT16",
    32: "INT32",
}
