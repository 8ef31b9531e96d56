"""BitTorrent tracker announce clients, bencoding, DHT messages and piece pickers."""

__version__ = "0.1.0"