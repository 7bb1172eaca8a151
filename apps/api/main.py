"""uvicorn entrypoint for the Doggo API.

    uvicorn apps.api.main:app --host 0.0.0.0 --port 8000

The instance is built here rather than in doggo.app so tests can import
create_app and inject fakes before startup.
"""

from doggo.app import create_app

app = create_app()

__all__ = ["app"]
