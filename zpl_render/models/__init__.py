"""
Data Models
===========

Pydantic data models for request/response validation and internal data structures.

Models:
- schemas: Render requests, label analysis, health reports and API responses
"""
