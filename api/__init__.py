"""HTTP surface - FastAPI routes, service wiring and rate limiting."""
