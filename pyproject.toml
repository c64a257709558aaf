[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ftpserv"
version = "0.1.0"
description = "A small asyncio FTP/FTPS server with a chrooted root, read-only mode, subnet filtering and INI configuration"
requires-python = ">=3.10"
dependencies = []
keywords = ["ftp", "ftps", "server", "asyncio", "tls"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: End Users/Desktop",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: Internet :: File Transfer Protocol (FTP)",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
ftpserv = "ftpserv.app:main"

[tool.hatch.build.targets.wheel]
packages = ["ftpserv"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
