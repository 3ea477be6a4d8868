"""
session.py — per-user application state.

  SETUP        no credential yet; the user must provide a Gemini API key
  ACQUISITION  ready to scan (photo / barcode / text)
  RESULT       a finished report is being shown

The only persisted piece is the credential (through key_store), which is
what lets a user pick up where they left off after a restart.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import key_store
from report import HealthyReport

logger = logging.getLogger(__name__)


class View(str, Enum):
    SETUP       = "setup"
    ACQUISITION = "acquisition"
    RESULT      = "result"


@dataclass
class AppSession:
    user_id: int
    view: View = View.SETUP
    credential: Optional[str] = None
    report: Optional[HealthyReport] = None

    async def restore(self) -> View:
        """Load the stored credential; skip setup when one exists."""
        self.credential = await key_store.get(self.user_id)
        self.view = View.ACQUISITION if self.credential else View.SETUP
        return self.view

    async def save_credential(self, value: str) -> None:
        value = (value or "").strip()
        if not value:
            raise ValueError("API key is required")
        await key_store.set(self.user_id, value)
        self.credential = value
        self.view = View.ACQUISITION
        logger.info("User %d saved a credential", self.user_id)

    def report_ready(self, report: HealthyReport) -> None:
        self.report = report
        self.view = View.RESULT

    def reset(self) -> None:
        """Back to scanning after looking at a report."""
        self.report = None
        self.view = View.ACQUISITION if self.credential else View.SETUP

    async def logout(self) -> None:
        await key_store.delete(self.user_id)
        self.credential = None
        self.report = None
        self.view = View.SETUP
        logger.info("User %d removed their credential", self.user_id)
