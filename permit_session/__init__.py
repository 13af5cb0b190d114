# permit_session/__init__.py

"""
Conversation session and recovery engine for the WhatsApp permit-intake flow.

This package contains:
- api: FastAPI routes and dependencies
- config: settings, constants and store key patterns
- container: service wiring (store, messaging, extraction)
- core: state machine, session store, locks, limits and error recovery
- pipeline: dialogue flow and per-message engine
- providers: pluggable store, messaging and extraction backends
"""

__all__ = ["__version__"]

__version__ = "1.0.0"
