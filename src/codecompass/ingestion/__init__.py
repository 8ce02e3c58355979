"""Source file ingestion: loading, filtering and metadata extraction."""
