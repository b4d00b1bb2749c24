[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "filecloud"
version = "0.1.0"
description = "A small file-sharing HTTP server with accounts, uploads, ranged downloads and share links"
requires-python = ">=3.10"
dependencies = []
keywords = ["http", "file-sharing", "upload", "download", "server", "sqlite"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
filecloud = "filecloud.server:main"

[tool.hatch.build.targets.wheel]
packages = ["filecloud"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
