"""
API Server for RackUp OBS.

Flask-based web server with the REST API and the overlay page.
"""

import logging
import re
from pathlib import Path
from typing import Optional

from flask import Flask, jsonify, send_from_directory
from flask_cors import CORS

from rackup_obs.api.routes import create_api_blueprint

logger = logging.getLogger(__name__)

# Only the local touch-screen UI and OBS browser sources may call the API
LOCAL_ORIGINS = [
    re.compile(r"^https?://localhost(:\d+)?$"),
    re.compile(r"^https?://127\.0\.0\.1(:\d+)?$"),
]


class APIServer:
    """
    Main API server class.

    Provides:
    - REST API endpoints
    - Overlay page for the OBS browser source
    """

    def __init__(self, app_context, host: str = "0.0.0.0", port: int = 4010):
        """
        Initialize API server.

        Args:
            app_context: RackupApp instance
            host: Host to bind to
            port: Port to listen on
        """
        self.app_context = app_context
        self.host = host
        self.port = port
        self.flask_app = self._create_flask_app()

    def _create_flask_app(self) -> Flask:
        """Create and configure Flask application."""
        static_folder = self._find_static_folder()

        app = Flask(
            __name__,
            static_folder=static_folder,
            static_url_path="/static"
        )

        CORS(app, origins=LOCAL_ORIGINS)

        api_blueprint = create_api_blueprint(self.app_context)
        app.register_blueprint(api_blueprint)

        self._register_routes(app)

        return app

    def _find_static_folder(self) -> Optional[str]:
        """Find the overlay page folder, if one is installed."""
        candidates = [
            Path(__file__).parent.parent.parent.parent / "overlay",
            Path("/opt/rackup/overlay"),
            Path.home() / "rackup" / "overlay",
        ]

        for path in candidates:
            if path.exists():
                return str(path)

        return None

    def _register_routes(self, app: Flask) -> None:
        """Register additional routes."""

        @app.route("/overlay")
        def overlay_page():
            """Scorebug page loaded by the OBS browser source."""
            if not app.static_folder:
                return jsonify({"error": "Overlay page not installed"}), 404
            return send_from_directory(app.static_folder, "overlay.html")

        @app.errorhandler(500)
        def server_error(e):
            logger.error(f"Server error: {e}")
            return jsonify({"error": "Internal server error"}), 500

    def run(self, debug: bool = False) -> None:
        """
        Run the Flask development server.

        Args:
            debug: Enable debug mode
        """
        logger.info(f"Starting API server on {self.host}:{self.port}")
        self.flask_app.run(
            host=self.host,
            port=self.port,
            debug=debug,
            threaded=True,
            use_reloader=False
        )

    def get_wsgi_app(self):
        """Get WSGI application for production deployment."""
        return self.flask_app
