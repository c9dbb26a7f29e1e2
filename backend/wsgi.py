# backend/wsgi.py
from qradmin import create_app

app = create_app()
