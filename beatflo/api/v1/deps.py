"""Service wiring for the API routers."""

from typing import Optional

from fastapi import HTTPException

from beatflo.services import Services

# Set by main.py during lifespan
_services: Optional[Services] = None


def set_services(services: Optional[Services]) -> None:
    global _services
    _services = services


def get_services() -> Services:
    """FastAPI dependency; 503 until the lifespan has started the services."""
    if _services is None:
        raise HTTPException(status_code=503, detail="Job services not initialized")
    return _services
