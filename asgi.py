"""
asgi.py -- ASGI entry point for FitCoach.

Process managers import the application from here so deployment config does
not depend on the package layout under api/.

Run with:  uvicorn asgi:app --reload
           gunicorn -k uvicorn.workers.UvicornWorker asgi:app
"""

from api.main import app

__all__ = ["app"]
