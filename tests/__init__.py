"""
Test Suite
==========

Test suite matching the mdbuf/ package structure.

Test Categories:
- unit: Unit tests for individual components
- integration: Protocol and server loop tests with a mocked browser page
- e2e: Rendering against a real Chromium browser
"""
