"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi escalate-overdue-reviews
    gunicorn wsgi:app
"""

from compliance_audit import create_app

app = create_app()
