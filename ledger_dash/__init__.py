"""ledger_dash: bank-statement import, rule categorization and spending summaries."""
from __future__ import annotations

from .api import app

__all__ = ["app"]
