"""
Upstream Module
===============

Everything between a render call and the remote label rendering service.

Components:
- cache: Content-addressed LRU cache of rendered bytes
- gate: Process-wide admission control for upstream calls
- client: aiohttp transport
- dispatcher: Single-call execution with rotation, retry/backoff and timeout
"""
