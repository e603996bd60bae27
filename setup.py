
from setuptools import setup, find_packages
from os import path
import re

package_name="qsoftmax"
root_dir = path.abspath(path.dirname(__file__))

with open("README.md") as f:
    long_description = f.read()

with open(path.join(root_dir, package_name, '__init__.py')) as f:
    init_text = f.read()
    version = re.search(r'__version__\s*=\s*[\'\"](.+?)[\'\"]', init_text).group(1)

setup(
    name=package_name,
    version=version,
    description=\
        "Integer-only lowering of quantized softmax (qnn.softmax / QLinearSoftmax). "+
        "Replaces the float exponential and normalization with shifts, adds and integer divisions.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="MIT License",
    packages=find_packages(include=[package_name, f"{package_name}.*"]),
    platforms=["linux", "unix"],
    python_requires=">=3.8",
    install_requires=[
        "numpy",
        "onnx",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        'console_scripts': [
            "qsoftmax=qsoftmax:main"
        ]
    }
)
