"""plughost CLI module.

This module provides the command-line interface for plughost, enabling users to:
    - Inspect configured plugins with `plughost status`
    - Call a plugin function directly with `plughost call`
    - Show version information with `plughost version`
"""
