"""ASGI entrypoint for the extraction API."""

from nutrivoice.api.app import create_app
from nutrivoice.containers import build_container

app = create_app(build_container())
