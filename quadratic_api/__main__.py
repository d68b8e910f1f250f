"""
Run the API with uvicorn: ``python -m quadratic_api``.
"""

from __future__ import annotations

import logging

import uvicorn

from quadratic_api.app import create_app
from quadratic_api.config import get_settings

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Listening on http://localhost:%s", settings.port)
    uvicorn.run(create_app(), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
