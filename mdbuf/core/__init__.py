"""
Core Business Logic
==================

Core modules for Markdown conversion and PNG rendering.

Modules:
- markdown: Markdown to HTML conversion with source line annotations
- rendering: HTML document assembly and PNG creation with browser automation
"""
