"""
WSGI / Flask CLI entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi purge-carts
    flask --app wsgi expire-claims
"""

from app import create_app

app = create_app()
