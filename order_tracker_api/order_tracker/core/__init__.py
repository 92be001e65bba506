"""
Core application utilities shared by the API and service layers.

This package provides:
- Application-level settings (separate from DB settings)
- Logging configuration with request/actor context
- The stage domain and the domain error taxonomy
- Dependency helpers (repository, actor resolution, role checks)
"""
