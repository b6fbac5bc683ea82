"""
WSGI entry point for the billing API.

    gunicorn --workers 2 --bind 127.0.0.1:5000 wsgi:app
"""

import logging

from dotenv import load_dotenv

load_dotenv()

from web.app import create_app  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

app = create_app()

if __name__ == '__main__':
    app.run()
