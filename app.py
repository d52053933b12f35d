"""
=============================================================================
FIDGET INDEX — APPLICATION ENTRY POINT (app.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This is the "front door" of the server. When you run "python app.py", a web
server starts that the dashboard and the phone camera page talk to. It:

  1. Starts and stops engagement monitoring on a video source (webcam, file,
     stream, or a phone paired through the signaling relay).
  2. Serves the live engagement state, alert cues and an MJPEG preview.
  3. Stores alert settings, alert history and engagement samples per session.

The actual URL handlers live in routes.py.

HOW TO RUN:
-----------
  - From project root:  python app.py
  - By default the app is at:  http://localhost:5000

CONFIGURATION:
--------------
  - Settings come from the .env file and config.py.
  - Never put real API keys (e.g. Pushover) in the code; use environment variables.
=============================================================================
"""

# ---------------------------------------------------------------------------
# Step 1: Load environment variables from .env (before anything else)
# ---------------------------------------------------------------------------
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent / ".env")

# ---------------------------------------------------------------------------
# Step 2: Import the web framework and our own modules
# ---------------------------------------------------------------------------
import logging

from flask import Flask
from flask_cors import CORS
from flask_compress import Compress

from routes import register_routes
import config

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# ---------------------------------------------------------------------------
# Step 3: Warn the user if settings look wrong
# ---------------------------------------------------------------------------
config.warn_missing_config()


def create_app() -> Flask:
    """
    Create and configure the Flask application.

      - CORS so the dashboard and the phone page can call the API from other origins.
      - Compression for the larger JSON responses (state, history, samples).
      - All URL rules registered via register_routes(app).
    """
    app = Flask(__name__)

    # In production you would restrict this to specific domains.
    CORS(app, resources={r"/*": {"origins": "*"}})

    Compress(app)

    register_routes(app)

    return app


# One global Flask application, created when this module is loaded.
app = create_app()


if __name__ == "__main__":
    # Debug: Flask's dev server with auto-reload. Otherwise Waitress; its
    # threads also carry the long-lived SSE signaling and MJPEG streams.
    if config.FLASK_DEBUG:
        app.run(
            host=config.FLASK_HOST,
            port=config.FLASK_PORT,
            debug=True,
            threaded=True,
        )
    else:
        import waitress
        waitress.serve(app, host=config.FLASK_HOST, port=config.FLASK_PORT, threads=16)
