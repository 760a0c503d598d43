"""Language-model collaborator interface and model fallback."""
