[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "synapse_torrent"
version = "0.1.0"
description = "BitTorrent tracker announce clients, bencoding, DHT message codec and piece pickers"
requires-python = ">=3.10"
dependencies = []
keywords = ["bittorrent", "tracker", "bencode", "dht", "krpc", "piece-picker", "torrent"]
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
    "Topic :: Communications :: File Sharing",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["synapse_torrent"]

[tool.pytest.ini_options]
addopts = "-ra"
