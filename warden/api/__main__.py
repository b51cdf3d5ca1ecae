"""
warden.api.__main__ — Entry point for ``python -m warden.api``
==============================================================

Serves the admin API on ``api_port`` from config.yaml.
"""

from __future__ import annotations

import logging

import uvicorn

from warden.config import load_config

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)


def main() -> None:
    cfg = load_config()
    uvicorn.run("warden.api.main:app", host="0.0.0.0", port=cfg.api_port, log_config=None)


if __name__ == "__main__":
    main()
