"""Markdown to HTML conversion with source line tracking."""
