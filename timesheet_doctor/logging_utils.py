"""Logging setup shared by the CLI and the web app."""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Initialise root logging once with the shared format.

    The level comes from the argument, then ``TIMESHEET_DOCTOR_LOG_LEVEL``,
    and defaults to ``WARNING`` so CLI stderr stays readable.
    """

    resolved_level = (level or os.getenv("TIMESHEET_DOCTOR_LOG_LEVEL", "WARNING")).upper()
    logging.basicConfig(level=resolved_level, format=LOG_FORMAT)
    logging.getLogger("timesheet_doctor").setLevel(resolved_level)
