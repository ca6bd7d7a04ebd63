"""
OIDC Gate
=========

Request-level OpenID Connect authentication for FastAPI applications.

Run the example service with:
    python -m oidc_gate.main
"""

__version__ = "1.0.0"
