"""Full-text index: schema, storage, indexing and search."""
