"""Infrastructure layer - configuration, persistence, logging and collaborator clients."""
