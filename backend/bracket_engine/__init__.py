"""Tournament progression engine: Swiss pairing, standings, knockout brackets and court assignment."""

__version__ = "0.4.0"
