"""Infrastructure adapters, stores and monitoring."""
