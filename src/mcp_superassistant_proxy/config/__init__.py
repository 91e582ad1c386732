"""
Configuration Management
=======================

Environment-based configuration using Pydantic Settings.

Components:
- settings: Proxy settings, mode selection and defaults
- logging: Structured logging configuration
"""
