from __future__ import annotations

import os

from mag.bootstrap import create_app
from mwc.logs import configure_logging
from mwc.settings import load_settings

settings = load_settings()
configure_logging(settings)

app = create_app(settings=settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app:app", host=os.getenv("MW_HOST", "127.0.0.1"), port=int(os.getenv("MW_PORT", "8000")), reload=False)
