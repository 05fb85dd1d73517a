"""
Shared API dependencies.
"""

from fastapi import Request

from ..container import AppServices


def get_services(request: Request) -> AppServices:
    """Services built by the application lifespan."""
    return request.app.state.services
