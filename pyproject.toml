[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "minicsem"
version = "0.1.0"
description = "Scanner, symbol table and semantic actions that build LLVM-style IR for a small C subset"
requires-python = ">=3.10"
dependencies = []
keywords = ["compiler", "c", "intermediate representation", "backpatching", "code generation"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Compilers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["minicsem"]

[tool.hatch.build.targets.sdist]
include = ["minicsem", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
