"""Gmail read-only access: message listing and header metadata."""
