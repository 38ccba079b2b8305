[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "arbiter"
version = "0.1.0"
description = "Asyncio engine for multi-agent simulations: agents, behaviors, messaging, worlds, nonce management and seeded Poisson sampling."
requires-python = ">=3.10"
dependencies = []
keywords = ["simulation", "agents", "multi-agent", "asyncio", "state-machine", "poisson", "nonce"]
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
    "Framework :: AsyncIO",
    "Topic :: Scientific/Engineering :: Artificial Life",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[tool.hatch.build.targets.wheel]
packages = ["arbiter"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
