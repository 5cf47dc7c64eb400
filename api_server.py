#!/usr/bin/env python
"""
FastAPI server for CMS Regen
Serves billing, generation and publish endpoints for the web UI
"""
import sys
import os
import logging

# Add src to Python path (relative to api_server.py)
src_path = os.path.join(os.path.dirname(__file__), "src")
if os.path.exists(src_path) and src_path not in sys.path:
    sys.path.insert(0, src_path)

from cms_regen.app import create_app
from cms_regen.config import config
from cms_regen.db.engine import init_db
from cms_regen.logging_config import setup_logging

setup_logging(env=config.ENV, log_level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Migrations own the schema outside dev
if config.is_dev:
    try:
        init_db()
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

app = create_app()


if __name__ == "__main__":
    import uvicorn

    try:
        port = int(os.getenv("PORT", 8000))
    except ValueError:
        logger.warning(f"Invalid PORT value: {os.getenv('PORT')}, using default 8000")
        port = 8000

    logger.info(f"Starting CMS Regen API server on port {port} (env: {config.ENV})")

    try:
        uvicorn.run(
            app,
            host="0.0.0.0",
            port=port,
            log_config=None,
            access_log=True,
            loop="asyncio",
        )
    except Exception as e:
        logger.error(f"Failed to start server: {e}", exc_info=True)
        sys.exit(1)
