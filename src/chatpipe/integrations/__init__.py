"""
Integrations Module - External Collaborators
============================================

Modules:
    session_store: SessionStore protocol and InMemorySessionStore
    completion_service: CompletionService protocol and HttpCompletionService

Both are injected into the pipeline so hosts can back them with their own
persistence or RPC layer.
"""
