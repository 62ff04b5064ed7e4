[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tieredstore"
version = "0.1.0"
description = "Tiered block storage for message streams: block format, file and object-store tiers, configuration and a management CLI"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = ["archiving", "tiered-storage", "streams", "blocks", "s3", "messaging"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Archiving",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
nts-ctl = "tieredstore.ctl:main"

[tool.hatch.build.targets.wheel]
packages = ["tieredstore"]

[tool.pytest.ini_options]
addopts = "-ra"
