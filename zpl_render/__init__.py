"""
ZPL Render Engine
=================

Render orchestration for ZPL label documents on top of a remote,
rate-limited label rendering service.

This package provides:
- Label segmentation and counting for ZPL documents
- A content-addressed LRU cache and a global concurrency gate for upstream calls
- Upstream dispatch with endpoint rotation, retry/backoff and timeouts
- Batch orchestration with deduplication of identical labels
- Document assembly into a single PDF (PDF merge or PNG embed)
- FastAPI REST endpoints for HTTP access
"""

__version__ = "1.0.0"
__author__ = "ZPL Render Team"
