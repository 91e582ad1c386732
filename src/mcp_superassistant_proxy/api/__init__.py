"""
HTTP Surface
============

FastAPI application serving the SSE binding to downstream clients.

Endpoints:
- GET <ssePath>: Open an SSE stream and create a session
- POST <messagePath>?sessionId=<id>: Deliver one JSON-RPC message for a session
- GET <healthPath>: Static health checks answering "ok"
"""
