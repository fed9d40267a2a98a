"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db init && flask --app wsgi db migrate && flask --app wsgi db upgrade
    flask --app wsgi create-super-admin admin admin@example.com
"""

from sitecms import create_app

app = create_app()
