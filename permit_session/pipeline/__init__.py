"""
Pipeline layer: schemas, prompts, dialogue flow, extraction service and the
per-message ConversationEngine.

    from permit_session.pipeline.engine import ConversationEngine
"""
