"""Unseal-key validation, unseal strategies, an HTTP Vault client, test doubles and an integration harness."""

__version__ = "0.1.0"