"""Vector storage, indexing and retrieval."""
