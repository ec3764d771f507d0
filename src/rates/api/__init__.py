"""HTTP control API."""

from rates.api.app import create_api_app

__all__ = ["create_api_app"]
