"""
FastAPI REST Endpoints
======================

REST API endpoints for HTTP access to ZPL rendering functionality.

Endpoints:
- POST /api/v1/render/preview: Render one label as PNG
- POST /api/v1/render/document: Render every label into one PDF
- POST /api/v1/labels/analyze: Label counting diagnostics
- GET /health: Liveness with cache and gate statistics
- GET /api/v1/health/upstream: Per-endpoint upstream probe
"""
