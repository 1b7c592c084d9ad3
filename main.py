from __future__ import annotations

import os

from calendar_copilot.app import create_app

app = create_app()


if __name__ == "__main__":
  import uvicorn

  host = os.getenv("APP_HOST", "0.0.0.0")
  port = int(os.getenv("APP_PORT", "8000"))
  uvicorn.run(app, host=host, port=port)
