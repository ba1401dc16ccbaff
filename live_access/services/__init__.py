"""Application services backed by external stores (rate limiting, sessions, identity)."""
