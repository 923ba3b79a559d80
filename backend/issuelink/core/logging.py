from __future__ import annotations

import logging

from issuelink.core.settings import Settings

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(settings: Settings) -> None:
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=_FORMAT)
    logging.getLogger("issuelink").setLevel(level)
    # urllib3 logs full request URLs at debug, which can include OAuth codes.
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))
