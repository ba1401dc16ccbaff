"""
Shared infrastructure: configuration, storage clients and API helpers.
"""
