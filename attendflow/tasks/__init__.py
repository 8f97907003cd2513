"""Background task definitions.

Request handlers *emit* tasks through the notification service; the worker
pools consume them. Task types and the wire format live in `types`, the
producer side in `client`, and the log-and-continue helpers for request
handlers in `emit`.
"""
