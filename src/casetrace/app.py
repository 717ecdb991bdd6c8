"""casetrace ASGI entry point (``uvicorn casetrace.app:app``)."""

from casetrace.api.main import create_app

app = create_app()
