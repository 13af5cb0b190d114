"""
HTTP surface: inbound message intake, health and error statistics.

    from permit_session.api.main import create_app
"""
