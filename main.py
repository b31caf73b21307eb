"""Entrypoint for running the ledger_dash FastAPI backend locally."""
from __future__ import annotations

import uvicorn

from ledger_dash import app
from ledger_dash.config import load_config


if __name__ == "__main__":
    uvicorn.run(
        "ledger_dash.api:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
        log_level=load_config().log_level.lower(),
    )
