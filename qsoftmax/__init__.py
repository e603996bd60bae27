__version__ = '1.0.0'

from qsoftmax.qsoftmax import lower, main
