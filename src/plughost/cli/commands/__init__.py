"""CLI commands for plughost.

This package contains the implementation of CLI commands:
    - status: Load configured plugins and report their state
    - call: Load one artifact and call one of its functions
    - version: Show version information
"""
