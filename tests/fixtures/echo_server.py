"""
Echo MCP Server
===============

Minimal stdio MCP server used as the bridged child process in tests.

- ``initialize`` answers with server info
- ``exit`` terminates with ``params.code``
- ``notify`` emits a notification before answering
- any other request is echoed back as its result

A banner that is not JSON is written to stdout first, and every request is
logged to stderr.
"""

import json
import sys


def reply(payload):
    sys.stdout.write(json.dumps(payload) + "\n")
    sys.stdout.flush()


def main():
    sys.stdout.write("echo server starting (not json)\n")
    sys.stdout.flush()

    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        message = json.loads(line)
        method = message.get("method")
        sys.stderr.write(f"echo server got {method}\n")
        sys.stderr.flush()

        if "id" not in message or method is None:
            continue
        if method == "exit":
            sys.exit(int(message.get("params", {}).get("code", 0)))
        if method == "initialize":
            result = {
                "protocolVersion": "2024-11-05",
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "echo-server", "version": "1.0.0"},
            }
        else:
            if method == "notify":
                reply({"jsonrpc": "2.0", "method": "notifications/message", "params": {"n": 1}})
            result = {"method": method, "params": message.get("params", {})}
        reply({"jsonrpc": "2.0", "id": message["id"], "result": result})


if __name__ == "__main__":
    main()
