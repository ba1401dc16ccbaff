"""
Domain layer containing core business logic and domain services.

Submodules:
- live: Credential issuance and viewer accounting for live sessions.
"""
