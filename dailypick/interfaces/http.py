import os
import logging
from datetime import datetime
from typing import Optional

from flask import Flask, request, jsonify

from dailypick.crosscutting.config import ConfigError
from dailypick.domain.errors import AuthorizationRequired, RunInProgress
from dailypick.infrastructure.credentials import SpotifyCredentialProvider
from dailypick.interfaces.trigger import DailyTrigger


class HTTPServer:
    """HTTP surface: OAuth callback, health checks and the daily trigger."""

    def __init__(self,
                 host: str = 'localhost',
                 port: int = 8888,
                 debug: bool = False,
                 trigger: Optional[DailyTrigger] = None,
                 credentials: Optional[SpotifyCredentialProvider] = None):
        """Initialize HTTP server.

        Args:
            host: Interface to bind
            port: Port to listen on
            debug: Flask debug mode
            trigger: Runs the daily selection; /daily answers 503 without it
            credentials: Exchanges OAuth codes received on /callback
        """
        self.host = host
        self.port = port
        self.debug = debug
        self.trigger = trigger
        self.credentials = credentials or (trigger.credentials if trigger else None)
        self.app = Flask(__name__)
        self.logger = logging.getLogger(__name__)

        self.version = "0.1.0"
        self.commit = os.getenv('GIT_COMMIT', 'unknown')

        self._setup_routes()

    def _setup_routes(self) -> None:
        """Setup Flask routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Health check endpoint."""
            problems = self.trigger.preflight() if self.trigger else ['daily selection is not configured']
            return jsonify({
                'status': 'healthy',
                'version': self.version,
                'commit': self.commit,
                'authorized': bool(self.credentials and self.credentials.has_tokens()),
                'ready': not problems,
                'problems': problems,
                'running': bool(self.trigger and self.trigger.is_running),
                'timestamp': datetime.now().isoformat()
            }), 200

        @self.app.route('/callback', methods=['GET'])
        def oauth_callback():
            """OAuth callback endpoint for Spotify."""
            code = request.args.get('code')
            error = request.args.get('error')

            if error:
                self.logger.error(f"OAuth error: {error}")
                return jsonify({
                    'error': 'OAuth authorization failed',
                    'details': error
                }), 400

            if not code:
                return jsonify({'code': 'no code provided'}), 400

            if self.credentials is None:
                return jsonify({'code': code}), 200

            try:
                self.credentials.exchange_code(code)
            except AuthorizationRequired as e:
                self.logger.error(f"OAuth code exchange rejected: {e}")
                return jsonify({'error': str(e)}), 400
            except Exception as e:
                self.logger.error(f"OAuth callback error: {e}")
                return jsonify({
                    'error': 'Internal server error',
                    'details': str(e)
                }), 500

            self.logger.info("OAuth tokens saved successfully")
            return jsonify({
                'code': code,
                'status': 'success',
                'message': 'OAuth tokens saved successfully',
                'timestamp': datetime.now().isoformat()
            }), 200

        @self.app.route('/auth/spotify', methods=['GET'])
        def spotify_auth():
            """Return the Spotify authorization URL."""
            if self.credentials is None or not self.credentials.client_id:
                return jsonify({
                    'error': 'Spotify client ID not configured'
                }), 500

            return jsonify({
                'auth_url': self.credentials.get_authorize_url(),
                'redirect_uri': self.credentials.redirect_uri
            }), 200

        @self.app.route('/daily', methods=['GET', 'POST'])
        def daily():
            """Run the daily selection once."""
            if self.trigger is None:
                return jsonify({'error': 'Daily selection is not configured'}), 503

            dry_run = request.args.get('dry_run', '').lower() in ('1', 'true', 'yes') or None

            try:
                outcome = self.trigger.run(dry_run=dry_run)
            except RunInProgress as e:
                return jsonify({'error': str(e)}), 409
            except (ConfigError, AuthorizationRequired) as e:
                self.logger.error(f"Daily request rejected: {e}")
                return jsonify({'error': str(e)}), 503
            except Exception as e:
                self.logger.error(f"Daily request failed: {e}")
                return jsonify({'error': str(e)}), 500

            return jsonify(outcome.to_dict()), 200

        @self.app.route('/', methods=['GET'])
        def root():
            """Root endpoint with basic info."""
            return jsonify({
                'service': 'DailyPick HTTP Interface',
                'version': self.version,
                'endpoints': {
                    'health': '/health',
                    'spotify_auth': '/auth/spotify',
                    'oauth_callback': '/callback',
                    'daily': '/daily'
                }
            }), 200

    def run(self) -> None:
        """Run the HTTP server."""
        self.logger.info(f"Server is running on http://{self.host}:{self.port}")
        self.app.run(
            host=self.host,
            port=self.port,
            debug=self.debug,
            use_reloader=False
        )


def create_app(trigger: Optional[DailyTrigger] = None,
               credentials: Optional[SpotifyCredentialProvider] = None) -> Flask:
    """Create Flask app."""
    server = HTTPServer(trigger=trigger, credentials=credentials)
    return server.app
