"""Credential issuance flow."""
