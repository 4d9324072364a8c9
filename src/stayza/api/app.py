"""ASGI entrypoint: ``uvicorn stayza.api.app:app`` (role from APP_ROLE)."""

from stayza.api.factory import create_app

app = create_app()
