[build-system]
requires = ["setuptools>=64"]
build-backend = "setuptools.build_meta"

[project]
name = "avpauthz"
version = "0.1.1"
description = "Decision core for HTTP external authorization: REST path to resource mapping, method to action mapping and cached policy decisions"
requires-python = ">=3.10"
dependencies = []
keywords = ["authorization", "envoy", "ext-authz", "cedar", "policy", "rest", "cache"]
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
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: Security",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.setuptools.packages.find]
include = ["avpauthz*"]

[tool.pytest.ini_options]
addopts = "-ra"
