#! /usr/bin/env python

import numpy as np
import onnx
from onnx import helper
from onnx import numpy_helper
from onnx import TensorProto

X = helper.make_tensor_value_info('X', TensorProto.INT8, [1,8,16])
Y = helper.make_tensor_value_info('Y', TensorProto.INT8, [1,8,16])

x_scale = numpy_helper.from_array(np.asarray(1.0 / 16.0, dtype=np.float32), name='x_scale')
x_zero_point = numpy_helper.from_array(np.asarray(0, dtype=np.int8), name='x_zero_point')
y_scale = numpy_helper.from_array(np.asarray(1.0 / 256.0, dtype=np.float32), name='y_scale')
y_zero_point = numpy_helper.from_array(np.asarray(-128, dtype=np.int8), name='y_zero_point')

qlinear_softmax = helper.make_node(
    'QLinearSoftmax',
    inputs = ['X', 'x_scale', 'x_zero_point', 'y_scale', 'y_zero_point'],
    outputs = ['Y'],
    name = 'QLinearSoftmax_0',
    domain = 'com.microsoft',
    axis = -1,
    opset = 13,
)

graph_def = helper.make_graph(
    [qlinear_softmax],
    'QLinearSoftmax',
    [X],
    [Y],
    initializer=[x_scale, x_zero_point, y_scale, y_zero_point],
)

model_def = helper.make_model(
    graph_def,
    opset_imports=[
        helper.make_operatorsetid('', 13),
        helper.make_operatorsetid('com.microsoft', 1),
    ],
)
onnx.save(model_def, 'QLinearSoftmax_13.onnx')
