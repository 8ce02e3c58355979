"""CodeCompass - semantic search and question answering over source trees."""

__version__ = "0.1.0"
