[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hitcounter"
version = "1.0.0"
description = "A web service that counts page hits in Redis and serves them as SVG badges and daily-hits graphs."
requires-python = ">=3.10"
keywords = ["hit counter", "badge", "svg", "redis", "aiohttp", "page views"]
classifiers = [
    "Development Status :: 5 - Production/Stable",
    "Environment :: Web Environment",
    "Framework :: AsyncIO",
    "Framework :: aiohttp",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: Dynamic Content :: Page Counters",
]
dependencies = [
    "aiohttp",
    "redis",
    "jinja2",
    "matplotlib",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
hitcounter = "hitcounter.app:main"

[tool.hatch.build.targets.wheel]
packages = ["hitcounter"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
