[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vaultring"
version = "1.0.0"
description = "Secure storage and management of encryption keys behind a Shamir-split or externally encrypted root key."
requires-python = ">=3.10"
dependencies = [
    "cryptography",
]
keywords = ["keyring", "encryption", "key management", "aes-gcm", "shamir", "secret sharing"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security :: Cryptography",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["vaultring"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
