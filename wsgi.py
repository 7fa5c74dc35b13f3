"""
WSGI entry point and Flask-Migrate / Alembic target.

Usage:
    gunicorn wsgi:app
    FLASK_APP=wsgi.py flask db init       # first time only (creates migrations/)
    FLASK_APP=wsgi.py flask db migrate -m "description"
    FLASK_APP=wsgi.py flask db upgrade
"""

from riskwise import create_app

app = create_app()
