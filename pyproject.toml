[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bagtools"
version = "1.0.0"
description = "Convert Dutch BAG address and building extracts to SQLite and serve address lookups over HTTP"
requires-python = ">=3.10"
dependencies = []
keywords = ["bag", "addresses", "postcode", "sqlite", "rijksdriehoek", "wgs84", "gis"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Natural Language :: English",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
    "Topic :: Scientific/Engineering :: GIS",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
bagconv = "bagtools.bagconv:main"
bagserv = "bagtools.bagserv:main"

[tool.hatch.build.targets.wheel]
packages = ["bagtools"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
