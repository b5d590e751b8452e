[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "parchisgame"
version = "0.1.0"
description = "Two-player Parchis board model, dice, AI players and online matchmaking servers"
requires-python = ">=3.10"
dependencies = []
keywords = ["parchis", "parcheesi", "board game", "game ai", "matchmaking"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Games/Entertainment :: Board Games",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
parchis-master = "parchisgame.master_server:main"

[tool.hatch.build.targets.wheel]
packages = ["parchisgame"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
