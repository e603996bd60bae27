#! /usr/bin/env python

import os
import re
import sys
import json
__path__ = (os.path.dirname(__file__), )
with open(os.path.join(__path__[0], '__init__.py')) as f:
    init_text = f.read()
    __version__ = re.search(r'__version__\s*=\s*[\'\"](.+?)[\'\"]', init_text).group(1)
from argparse import ArgumentParser
from typing import Optional, Dict, Any, Tuple

import onnx

from qsoftmax.lowering.accuracy_evaluator import evaluate_lowering_accuracy
from qsoftmax.lowering.canonicalize import canonicalize_model_ir, lower_qnn_softmax
from qsoftmax.lowering.constants import AlgorithmConstants, ShiftGuard
from qsoftmax.lowering.errors import QnnSoftmaxError
from qsoftmax.lowering.ir import ModelIR
from qsoftmax.lowering.lower_from_onnx import lower_onnx_to_ir
from qsoftmax.lowering.op_builders import node_label
from qsoftmax.utils.logging import *


def lower(
    input_onnx_file_path: Optional[str] = '',
    onnx_graph: Optional[onnx.ModelProto] = None,
    output_report_path: Optional[str] = None,
    shift_guard: Optional[str] = None,
    eval_with_reference: Optional[bool] = False,
    eval_num_samples: Optional[int] = None,
    eval_seed: Optional[int] = 0,
    verbosity: Optional[str] = 'warn',
) -> Tuple[ModelIR, Dict[str, Any]]:
    """Lower every QLinearSoftmax of an ONNX model to integer-only arithmetic.

    Parameters
    ----------
    input_onnx_file_path: Optional[str]
        Input onnx file path.\n
        Either input_onnx_file_path or onnx_graph must be specified.

    onnx_graph: Optional[onnx.ModelProto]
        onnx.ModelProto.\n
        Takes precedence over input_onnx_file_path.

    output_report_path: Optional[str]
        Path of the JSON report to write.\n
        Default: no report file.

    shift_guard: Optional[str]
        "saturate" or "strict". Behaviour when the exponent shift n - q can\n
        become negative for the input scale.\n
        Default: $QSOFTMAX_SHIFT_GUARD or "saturate".

    eval_with_reference: Optional[bool]
        Compare each lowered node with float softmax on seeded int8 inputs.

    eval_num_samples: Optional[int]
        Number of random samples per node.\n
        Default: $QSOFTMAX_EVAL_NUM_SAMPLES or 10.

    eval_seed: Optional[int]
        Seed of the sample generator.

    verbosity: Optional[str]
        One of "debug", "info", "warn", "error".

    Returns
    ----------
    model_ir: ModelIR
        Canonicalized graph.

    report: Dict[str, Any]
        Canonicalization report, plus "accuracy" when requested.
    """
    set_log_level(verbosity)
    guard = ShiftGuard.resolve(shift_guard)

    if onnx_graph is None:
        if not input_onnx_file_path:
            raise ValueError('Either input_onnx_file_path or onnx_graph must be specified.')
        if not os.path.exists(input_onnx_file_path):
            raise FileNotFoundError(f'The specified file (.onnx) does not exist. {input_onnx_file_path}')
        onnx_graph = onnx.load(input_onnx_file_path)
        model_name = os.path.splitext(os.path.basename(input_onnx_file_path))[0]
    else:
        model_name = onnx_graph.graph.name or 'model'

    info(Color.GREEN(f'qsoftmax {__version__}'), f'model: {model_name} shift_guard: {guard.value}')
    imported = lower_onnx_to_ir(onnx_graph, output_file_name=model_name)
    constants = AlgorithmConstants()
    model_ir, report = canonicalize_model_ir(imported, constants=constants, shift_guard=guard)
    report['algorithm_constants'] = {'n': constants.n, 'm': constants.m, 'bits': constants.bits}
    report['shift_guard'] = guard.value

    if eval_with_reference:
        accuracy = []
        for op in imported.operators:
            try:
                lowering = lower_qnn_softmax(op, imported, constants=constants, shift_guard=guard)
                result = evaluate_lowering_accuracy(
                    fragment=lowering.fragment,
                    op=op,
                    axis=lowering.axis,
                    num_samples=eval_num_samples,
                    seed=int(eval_seed),
                )
            except (ValueError, NotImplementedError) as ex:
                warn(f'accuracy evaluation skipped for {node_label(op)}: {ex}')
                continue
            result['node_name'] = node_label(op)
            judge = Color.GREEN('PASS') if result['pass'] else Color.RED('FAIL')
            info(f'{judge} {node_label(op)} metrics: {result["metrics"]}')
            accuracy.append(result)
        report['accuracy'] = accuracy

    summary = report['summary']
    info(
        f'lowered: {summary["lowered_nodes"]}/{summary["total_nodes"]} '
        f'unresolved: {summary["unresolved_nodes"]} failed: {summary["failed_nodes"]}'
    )
    if output_report_path:
        report_dir = os.path.dirname(output_report_path)
        if report_dir:
            os.makedirs(report_dir, exist_ok=True)
        with open(output_report_path, 'w') as f:
            json.dump(report, f, indent=2)
        info(Color.GREEN('report written:'), output_report_path)
    return model_ir, report


def main():
    parser = ArgumentParser()
    iV_group = parser.add_mutually_exclusive_group(required=True)
    iV_group.add_argument(
        '-i',
        '--input_onnx_file_path',
        type=str,
        help='Input onnx file path.'
    )
    iV_group.add_argument(
        '-V',
        '--version',
        action='store_true',
        help='Show version and exit.'
    )
    parser.add_argument(
        '-o',
        '--output_report_path',
        type=str,
        help=\
            'Output JSON report path. \n' +
            'Default: print the report to stdout'
    )
    parser.add_argument(
        '-sg',
        '--shift_guard',
        type=str,
        choices=[g.value for g in ShiftGuard],
        help=\
            'Handling of exponent shift amounts that can become negative. \n' +
            '"saturate": decay underflowing lanes toward zero. \n' +
            '"strict": reject the node. \n' +
            'Default: $QSOFTMAX_SHIFT_GUARD or "saturate"'
    )
    parser.add_argument(
        '-e',
        '--eval_with_reference',
        action='store_true',
        help=\
            'Compare every lowered node with float softmax on seeded int8 samples.'
    )
    parser.add_argument(
        '-ens',
        '--eval_num_samples',
        type=int,
        help=\
            'Number of samples per node for --eval_with_reference. \n' +
            'Default: $QSOFTMAX_EVAL_NUM_SAMPLES or 10'
    )
    parser.add_argument(
        '-v',
        '--verbosity',
        type=str,
        choices=['debug', 'info', 'warn', 'error'],
        default='info',
        help=\
            'Change the level of information printed. \n' +
            'Default: "info"'
    )
    args = parser.parse_args()

    if args.version:
        print(__version__)
        sys.exit(0)

    try:
        _, report = lower(
            input_onnx_file_path=args.input_onnx_file_path,
            output_report_path=args.output_report_path,
            shift_guard=args.shift_guard,
            eval_with_reference=args.eval_with_reference,
            eval_num_samples=args.eval_num_samples,
            verbosity=args.verbosity,
        )
    except (QnnSoftmaxError, NotImplementedError) as ex:
        error(ex)
        sys.exit(1)

    if not args.output_report_path:
        print(json.dumps(report, indent=2))
    if report['summary']['failed_nodes'] > 0 or report['summary']['unresolved_nodes'] > 0:
        sys.exit(1)


if __name__ == '__main__':
    main()
