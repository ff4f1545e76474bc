"""
Models Module - Data Models and Error Taxonomy
==============================================

Modules:
    session_models: Session and Message models with runtime validation
    event_models: Stream frames and the request/response bodies of the backend
    error_models: FailureKind, ErrorCategory, user-facing messages and exceptions

Messages carry a transient ``streaming`` flag. It is true only on the
in-flight assistant placeholder, and once cleared the message is final.
"""
