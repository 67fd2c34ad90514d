"""
API module.
Contains the read-only monitoring FastAPI application.
"""

from delayed_jobs.api.main import create_app, run

__all__ = ["create_app", "run"]
