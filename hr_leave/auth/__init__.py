"""Auth module — acting identity, JWT dependencies and role assignments."""
