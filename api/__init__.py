"""
API Layer for the Landmark Face Authentication System

This package provides the FastAPI-based API layer that exposes:
- REST endpoints for face enrollment, analysis and authentication
- REST endpoints for user management and health checks

The API layer connects the browser client to the core engine.
"""
