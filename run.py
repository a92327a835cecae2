#!/usr/bin/env python3
"""Entry point for the posprint API server."""
import logging
import os
from posprint import create_app

app = create_app(os.environ.get("FLASK_ENV", "default"))

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    # Get host and port from environment or use defaults
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", 5000))
    debug = os.environ.get("FLASK_ENV", "default") == "development"

    logger.info("Starting posprint on http://%s:%d", host, port)
    app.run(host=host, port=port, debug=debug)
