"""Allow ``python -m mcp_superassistant_proxy``."""

from mcp_superassistant_proxy.cli import main

if __name__ == "__main__":
    main()
