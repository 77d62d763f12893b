"""
Configuration Management
=======================

Environment-based configuration using Pydantic Settings.

Components:
- settings: Upstream, batching and assembly settings
- logging: Structured logging configuration
"""
