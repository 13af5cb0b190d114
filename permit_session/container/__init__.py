"""Dependency injection container."""

from permit_session.container.service_container import ServiceContainer

__all__ = ["ServiceContainer"]
