"""
toolcore.runner - Tool Host Process Runner

Runs a ToolHost as a persistent process with a health endpoint.

Usage:
    python -m toolcore.runner --config config/mcp.config.json --health-port 9100
"""
