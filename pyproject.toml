[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vusbip"
version = "0.1.0"
description = "USB/IP protocol codecs and a TCP server for exporting virtual USB devices"
requires-python = ">=3.10"
dependencies = []
keywords = ["usb", "usbip", "virtual-device", "protocol", "server"]
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
    "Topic :: System :: Hardware :: Universal Serial Bus (USB)",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["vusbip"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
