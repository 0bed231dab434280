# backend/wsgi.py
from marketpay import create_app

app = create_app()
