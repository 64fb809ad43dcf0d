"""
WSGI / Flask CLI entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-users
    gunicorn wsgi:app
"""

from watermap import create_app

app = create_app()
