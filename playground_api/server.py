from __future__ import annotations

import os

import uvicorn

from playground_api.app import create_app
from playground_sandbox.logs import configure_logging
from playground_sandbox.settings import SandboxSettings


def main() -> None:
    configure_logging()
    host = os.getenv("PLAYGROUND_HOST", "0.0.0.0").strip() or "0.0.0.0"
    port = int(os.getenv("PLAYGROUND_PORT", "8000"))
    settings = SandboxSettings()
    app = create_app(settings)
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
