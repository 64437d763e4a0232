[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "netkit"
version = "0.1.0"
description = "Neural network training helpers on numpy: SGD updater, evaluation metrics, batch data iterators and network structure configuration"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = ["neural network", "sgd", "metrics", "mnist", "data iterator", "configuration"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Artificial Intelligence",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["netkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
