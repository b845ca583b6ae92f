[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "imuxkit"
version = "0.1.0"
description = "Talk to iOS devices through usbmuxd, with XPC, CDTunnel and property-list helpers"
requires-python = ">=3.10"
dependencies = [
    "websockets",
]
keywords = ["ios", "usbmuxd", "xpc", "plist", "remotexpc", "cdtunnel", "web-inspector"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: Communications",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
idevice-id = "imuxkit.idevice_id:main"

[tool.hatch.build.targets.wheel]
packages = ["imuxkit"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
