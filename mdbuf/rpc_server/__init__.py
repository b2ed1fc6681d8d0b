"""
RPC Server Implementation
========================

JSON-RPC 2.0 worker protocol over stdin/stdout.

Methods provided:
- render: Render Markdown to PNG with a source map
- ping: Report server status and version
- shutdown: Release the browser session and exit
"""
