"""Run the lead distribution API: python -m leadflow.api

Reads LEADFLOW_API_HOST, LEADFLOW_API_PORT and LEADFLOW_DATABASE_PATH.
Set LEADFLOW_JOBS_ENABLED=true to run the reservation/expiry jobs in-process.
"""

import uvicorn

from .config import settings
from .main import create_app


def main():
    uvicorn.run(
        create_app(db_path=settings.db_path),
        host=settings.host,
        port=settings.port,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
