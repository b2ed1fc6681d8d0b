"""
Data Models
===========

Pydantic data models for request/response validation.

Models:
- schemas: Render request/result models and JSON-RPC envelopes
"""
