"""
Streaming Module - Reply Delivery Pipeline
==========================================

Modules:
    frame_parser: Incremental text-event decoding with carry-over between chunks
    error_classifier: Failure to ErrorCategory mapping
    fallback_replies: Ordered local reply rules used when the backend is unreachable
    cancellation: Cooperative cancellation token
    controller: Per-conversation message list and exchange state machine
    transport: Stream / one-shot / local reply selection
    render: Literal versus rich display with a settling delay

Example:
    controller = MessageStreamController(session_id)
    selector = TransportSelector(completion_service, HttpxStreamingTransport(client, url))
    exchange = await selector.send(controller, "hello")
"""
