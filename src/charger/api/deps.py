"""Request dependencies."""

from fastapi import Request

from charger.services import Services


def get_services(request: Request) -> Services:
    """Get the process-wide services attached to the app."""
    return request.app.state.services
