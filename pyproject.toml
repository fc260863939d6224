[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tinyagents"
version = "0.1.0"
description = "Building blocks for actor-style LLM agents: supervision strategies, tools, team coordinators, routers, consistent-hash placement and a framed TCP transport."
requires-python = ">=3.11"
dependencies = []
keywords = [
    "agents",
    "actors",
    "llm",
    "supervision",
    "consistent-hashing",
    "transport",
    "asyncio",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Framework :: AsyncIO",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["tinyagents"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
strict = true
packages = ["tinyagents"]
