"""
chatpipe - Streaming Chat Response Pipeline
===========================================

Client side of a chat assistant: send a message, consume the reply as a
chunked text-event stream, fall back to a one-shot call when streaming is not
possible, and decide when a reply is shown literally or richly formatted.

Subpackages:
    streaming: Frame parsing, exchange state, transport selection, rendering
    core: Configuration and the conversation manager
    models: Pydantic/dataclass models and the error taxonomy
    integrations: Session store and completion service collaborators
    utils: Logging, HTTP logging and HTTP client creation
    app: Bootstrap and application state
"""

__version__ = "0.1.0"
