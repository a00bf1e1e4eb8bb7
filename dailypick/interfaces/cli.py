import argparse
import json
import sys
import logging
import signal
import time
from typing import Callable, Optional

from dailypick.application.pipeline import DailySelectionPipeline
from dailypick.crosscutting.config import ConfigError, Settings, TokenStore, load_settings
from dailypick.crosscutting.logging import setup_logging
from dailypick.domain.errors import AuthorizationRequired
from dailypick.infrastructure.credentials import SpotifyCredentialProvider
from dailypick.infrastructure.providers.lastfm import LastFmHistoryProvider
from dailypick.infrastructure.providers.spotify import SpotifyProvider
from dailypick.interfaces.http import HTTPServer
from dailypick.interfaces.scheduler import DailyScheduler
from dailypick.interfaces.trigger import DailyTrigger


def _prompt_for_code(auth_url: str) -> str:
    """Print the authorize URL and read the code pasted by the user."""
    print("Open this URL in your browser and authorize the app:")
    print(auth_url)
    return input("Enter the code from the URL: ")


class CLI:
    """Command Line Interface for DailyPick."""

    def __init__(self, settings_loader: Callable[[], Settings] = load_settings,
                 prompt: Callable[[str], str] = _prompt_for_code):
        """Initialize CLI."""
        self.parser = self._create_parser()
        self._settings_loader = settings_loader
        self._prompt = prompt
        self._start_time = None
        self._scheduler: Optional[DailyScheduler] = None

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        parser = argparse.ArgumentParser(
            prog='dailypick',
            description='Add your most played track of the day to a Spotify playlist'
        )

        common = argparse.ArgumentParser(add_help=False)
        common.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            default='INFO',
            help='Set logging level'
        )
        common.add_argument(
            '--log-file',
            default=None,
            help='Also write logs to this file (rotated)'
        )
        common.add_argument(
            '--json-logs',
            action='store_true',
            help='Emit structured JSON log lines'
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        serve_parser = subparsers.add_parser('serve', parents=[common],
                                             help='Run the HTTP server and the daily schedule')
        serve_parser.add_argument('--host', default=None, help='Interface to bind (default from HOST)')
        serve_parser.add_argument('--port', type=int, default=None, help='Port to listen on (default from PORT)')
        serve_parser.add_argument(
            '--no-schedule',
            action='store_true',
            help='Do not start the daily schedule'
        )

        run_parser = subparsers.add_parser('run', parents=[common], help='Run the daily selection once')
        run_parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Select a track but do not modify the playlist'
        )
        run_parser.add_argument(
            '--report-dir',
            default=None,
            help='Directory for the JSON run report'
        )

        subparsers.add_parser('authorize', parents=[common], help='Authorize Spotify access interactively')
        subparsers.add_parser('config', parents=[common], help='Show configuration summary')

        return parser

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger = logging.getLogger(__name__)
            logger.warning(f"Received signal {signum}, shutting down gracefully...")
            self._cleanup_resources()
            sys.exit(130)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _cleanup_resources(self) -> None:
        """Clean up resources on exit."""
        logger = logging.getLogger(__name__)
        if self._scheduler is not None:
            self._scheduler.stop()
            self._scheduler = None
        if self._start_time:
            duration = time.time() - self._start_time
            logger.debug(f"CLI execution time: {duration:.2f}s")

    def _create_credentials(self, settings: Settings) -> SpotifyCredentialProvider:
        """Create the Spotify credential provider."""
        if not settings.spotify_client_id or not settings.spotify_client_secret:
            raise ConfigError("SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET environment variables are required")
        return SpotifyCredentialProvider(
            client_id=settings.spotify_client_id,
            client_secret=settings.spotify_client_secret,
            redirect_uri=settings.spotify_redirect_uri,
            token_store=TokenStore(settings.token_file),
        )

    def _create_trigger(self, settings: Settings,
                        credentials: SpotifyCredentialProvider) -> DailyTrigger:
        """Wire providers and pipeline."""
        history_provider = LastFmHistoryProvider(api_key=settings.lastfm_api_key or '')
        streaming_provider = SpotifyProvider(credentials, market=settings.search_market)
        pipeline = DailySelectionPipeline(
            history_provider=history_provider,
            streaming_provider=streaming_provider,
            lookback_hours=settings.lookback_hours,
            dry_run=settings.dry_run,
            report_dir=settings.report_dir,
        )
        return DailyTrigger(settings, pipeline, credentials)

    def _serve(self, args: argparse.Namespace, settings: Settings) -> None:
        """Start the schedule and the HTTP server."""
        logger = logging.getLogger(__name__)

        credentials = self._create_credentials(settings)
        trigger = self._create_trigger(settings, credentials)

        if credentials.load():
            try:
                credentials.refresh()
            except AuthorizationRequired as e:
                logger.warning(f"Could not refresh access token: {e}")
        if not credentials.has_tokens():
            logger.warning("Not authorized yet. Open this URL in your browser and authorize the app:")
            logger.warning(credentials.get_authorize_url())

        if settings.schedule_enabled and not args.no_schedule:
            self._scheduler = DailyScheduler(trigger.run, settings.schedule)
            self._scheduler.start()
        else:
            logger.info("Running in manual mode (no schedule)")

        server = HTTPServer(
            host=args.host or settings.host,
            port=args.port or settings.port,
            trigger=trigger,
            credentials=credentials,
        )
        server.run()

    def _run_once(self, args: argparse.Namespace, settings: Settings) -> int:
        """Run the daily selection once and print the outcome."""
        logger = logging.getLogger(__name__)

        if args.report_dir:
            settings.report_dir = args.report_dir
        settings.validate()

        credentials = self._create_credentials(settings)
        trigger = self._create_trigger(settings, credentials)
        credentials.load()

        try:
            outcome = trigger.run(dry_run=True if args.dry_run else None)
        except AuthorizationRequired as e:
            logger.error(f"Not authorized: {e}. Run 'dailypick authorize' first.")
            return 1
        except Exception as e:
            logger.error(f"Daily selection failed: {e}")
            return 1

        print(json.dumps(outcome.to_dict(), indent=2, ensure_ascii=False))
        return 0

    def _authorize(self, args: argparse.Namespace, settings: Settings) -> int:
        """Run the interactive authorization-code flow."""
        logger = logging.getLogger(__name__)

        credentials = self._create_credentials(settings)
        try:
            credentials.ensure_authorized(self._prompt)
        except AuthorizationRequired as e:
            logger.error(f"Authorization failed: {e}")
            return 1

        logger.info(f"Tokens saved to {settings.token_file}")
        return 0

    def _show_config(self, args: argparse.Namespace, settings: Settings) -> int:
        summary = settings.summary()
        summary['authorized'] = TokenStore(settings.token_file).has_token_pair()
        print(json.dumps(summary, indent=2))
        return 0 if not summary['missing'] else 1

    def run(self, argv: Optional[list] = None) -> int:
        """Run the CLI and return the exit code."""
        self._start_time = time.time()

        args = self.parser.parse_args(argv)
        if not args.command:
            self.parser.print_help()
            return 1

        setup_logging(args.log_level, log_file=args.log_file, json_format=args.json_logs)
        logger = logging.getLogger(__name__)

        try:
            settings = self._settings_loader()

            if args.command == 'serve':
                self._setup_signal_handlers()
                self._serve(args, settings)
                return 0
            if args.command == 'run':
                return self._run_once(args, settings)
            if args.command == 'authorize':
                return self._authorize(args, settings)
            if args.command == 'config':
                return self._show_config(args, settings)

            self.parser.print_help()
            return 1

        except KeyboardInterrupt:
            logger.warning("Operation cancelled by user")
            return 130
        except ConfigError as e:
            logger.error(f"Configuration error: {e}")
            return 1
        finally:
            self._cleanup_resources()


def main():
    """Main entry point."""
    cli = CLI()
    sys.exit(cli.run())


if __name__ == '__main__':
    main()
