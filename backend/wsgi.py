# backend/wsgi.py
from shopadmin import create_app

app = create_app()
