"""
Live session access domain logic.

Includes:
- credential: Actor ids and signed media credentials.
- viewer: Best-effort viewer accounting.
- issuance: The issuance flow tying rate limiting, validation and signing together.
"""
