[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "aneinfer"
version = "0.1.0"
description = "GGUF parsing, dequantization, quantized GEMV, BPE tokenization, MIL program text generation and CPU transformer kernels"
requires-python = ">=3.10"
dependencies = ["numpy"]
keywords = ["gguf", "llm", "quantization", "mil", "transformer", "tokenizer", "bpe"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Artificial Intelligence",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["aneinfer"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
