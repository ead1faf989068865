"""
raidquota.__main__ — Start the API server
===========================================

Usage::

    python -m raidquota              # reads config.yaml + .env
"""

from __future__ import annotations

import logging

import uvicorn
from dotenv import load_dotenv

from raidquota.config import load_config

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)-30s │ %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("raidquota")


def main() -> None:
    load_dotenv()
    cfg = load_config()
    logger.info("Starting %s points API on port %d", cfg.community_name, cfg.api_port)
    uvicorn.run("raidquota.api.main:app", host="0.0.0.0", port=cfg.api_port, log_config=None)


if __name__ == "__main__":
    main()
