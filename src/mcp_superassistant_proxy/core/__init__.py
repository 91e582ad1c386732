"""
Core Bridging Machinery
=======================

Transport-level building blocks shared by the bridge engines.

Modules:
- errors: Error taxonomy and upstream error translation
- framing: Newline-delimited JSON-RPC framing for the stdio binding
- reconnect: Bounded exponential-backoff reconnection controller
- child_process: Spawned stdio MCP server handle
- stdio: The proxy's own stdin/stdout as a message channel
- upstream: Client side of the SSE binding
"""
