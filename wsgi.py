"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-checklist-templates
    gunicorn wsgi:app
"""

from onboarding_desk import create_app

app = create_app()
