"""
Core Layer - Configuration and Conversation Management
======================================================

Modules:
    constants: Protocol literals, timing values and Pydantic settings validation
    conversations: Session list, active conversation and send routing

Configuration (constants.py):
    Centralized configuration using Pydantic Settings for validation:
    - Backend base URL and endpoint paths
    - Streaming capability flag and HTTP timeouts
    - Render settling delay and history page size
    - Logging configuration

Conversations (conversations.py):
    ConversationManager keeps one MessageStreamController per session. It
    creates a session on demand when the first message is sent, auto-selects
    the most recent session, and routes explicit cancellation. Switching the
    active conversation never interrupts another conversation's reply.

See Also:
    :mod:`chatpipe.streaming.transport`: How a single exchange is delivered
"""
