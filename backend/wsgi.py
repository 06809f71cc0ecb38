# backend/wsgi.py
from agrisupply import create_app

app = create_app()
