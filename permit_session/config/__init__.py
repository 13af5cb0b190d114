"""
Configuration layer: Settings, constants and store key patterns.

    from permit_session.config import Settings, CONSTANTS
"""

from permit_session.config.settings import Settings
from permit_session.config.constants import CONSTANTS

__all__ = ["Settings", "CONSTANTS"]
