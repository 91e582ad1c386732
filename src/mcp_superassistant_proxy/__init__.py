"""
MCP SuperAssistant Proxy
========================

Transport translation for the Model Context Protocol (MCP).

Lets a tool server that only speaks one MCP transport binding be consumed by a
client that only speaks another:

- stdio → SSE: expose a local stdio MCP server over Server-Sent Events
- SSE → stdio: expose a remote SSE MCP server as a local stdio server
- SSE → SSE: relay a remote SSE MCP server to many local SSE sessions
"""

__version__ = "0.1.0"
__author__ = "MCP SuperAssistant Proxy Team"
