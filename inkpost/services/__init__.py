# inkpost/services/__init__.py
"""
Gateway collaborators shared by the blog services.
"""

from inkpost.services.event_bus import EventBus, EventType
from inkpost.services.auth_gateway import AuthGateway
from inkpost.services.gateway import Gateway, create_gateway

__all__ = [
    "EventBus",
    "EventType",
    "AuthGateway",
    "Gateway",
    "create_gateway",
]
