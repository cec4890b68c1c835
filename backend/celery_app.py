"""Worker entrypoint: ``celery -A celery_app.celery worker`` from backend/."""

from agriloop import create_app
from agriloop.celery_app import create_celery_app

flask_app = create_app()
celery = create_celery_app(flask_app)
