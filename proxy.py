"""Entry point for running the playground proxy with uvicorn.

Usage:
    python proxy.py
    uvicorn proxy:app --host 0.0.0.0 --port 8000
"""

import uvicorn

from playground_proxy import create_app

app = create_app()


if __name__ == "__main__":
    settings = app.state.settings
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
