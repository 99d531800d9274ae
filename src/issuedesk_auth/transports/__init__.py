"""HTTP transport for the issuance service"""

from .http_server import create_app

__all__ = ["create_app"]
