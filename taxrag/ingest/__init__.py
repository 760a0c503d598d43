"""Document metadata, chunking, embedding and the passage store."""
