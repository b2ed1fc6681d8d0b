"""
Rendering Engine
===============

HTML document assembly and Playwright-based PNG rendering.
"""
