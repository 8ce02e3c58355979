"""Embedding and generation providers."""
