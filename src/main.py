"""
main.py

Entry point for the Rapportino daily work report API.

Configures logging from the settings and starts uvicorn.  The storage
backend is chosen by STORAGE_BACKEND (memory | sqlite); see config.py.

Usage
-----
    # Option 1: run directly
    python main.py

    # Option 2: run via uvicorn CLI (recommended for development)
    uvicorn main:app --reload --port 8000

    # Option 3: persistent storage
    STORAGE_BACKEND=sqlite DATABASE_PATH=./rapportino.db uvicorn main:app

Once running, open your browser at:
    http://localhost:8000/docs      ← Swagger UI  (try every endpoint interactively)
    http://localhost:8000/redoc     ← ReDoc
    http://localhost:8000/health    ← liveness check

Quick-start walkthrough (use Swagger UI or curl)
-------------------------------------------------
1.  POST  /api/v1/reports/today                          start (or resume) today's draft
2.  POST  /api/v1/reports/{id}/clients                   add a client and job site
3.  POST  /api/v1/clients/{cid}/activities/machine       record machine hours
4.  POST  /api/v1/clients/{cid}/activities/material      record material
5.  POST  /api/v1/reports/{id}/finalize                  lock the day
6.  GET   /api/v1/dashboard                              weekly / monthly hours
"""

import logging

import uvicorn

from config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

from api import app  # noqa: E402  (logging must be configured first)


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="127.0.0.1",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )
