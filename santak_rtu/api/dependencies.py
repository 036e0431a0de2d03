"""
FastAPI dependencies for the plugin API.
"""
from fastapi import Request

from ..platform.platform_client import PlatformClient


def get_platform_client(request: Request) -> PlatformClient:
    """Get the platform client attached to the running application."""
    return request.app.state.platform_client
