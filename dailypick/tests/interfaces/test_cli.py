import json
import os
import shutil
import tempfile
from unittest.mock import Mock, patch

import pytest

from dailypick.crosscutting.config import Settings
from dailypick.domain.entities import OUTCOME_ADDED, SelectionOutcome, TrackIdentity
from dailypick.domain.errors import AuthorizationRequired, TemporaryFailure
from dailypick.interfaces.cli import CLI


class TestCLI:
    """Tests for the command line interface."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.settings = Settings(
            spotify_client_id='client',
            spotify_client_secret='secret',
            spotify_playlist_id='pl1',
            lastfm_user='listener',
            lastfm_api_key='lfm',
            token_file=os.path.join(self.temp_dir, 'token.json'),
        )
        self.prompt = Mock(return_value='pasted-code')
        self.cli = CLI(settings_loader=lambda: self.settings, prompt=self.prompt)
        self._logging_patch = patch('dailypick.interfaces.cli.setup_logging')
        self.setup_logging = self._logging_patch.start()

    def teardown_method(self):
        self._logging_patch.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_parser_commands(self):
        args = self.cli.parser.parse_args(['run', '--dry-run', '--report-dir', 'reports'])
        assert args.command == 'run'
        assert args.dry_run is True
        assert args.report_dir == 'reports'

        args = self.cli.parser.parse_args(['serve', '--port', '9000', '--no-schedule', '--json-logs'])
        assert args.port == 9000
        assert args.no_schedule is True
        assert args.json_logs is True

    def test_no_command_prints_help(self):
        assert self.cli.run([]) == 1

    def test_logging_configured_from_options(self):
        self.cli.run(['config', '--log-level', 'DEBUG', '--json-logs'])

        self.setup_logging.assert_called_once_with('DEBUG', log_file=None, json_format=True)

    def test_config_summary(self, capsys):
        exit_code = self.cli.run(['config'])

        assert exit_code == 0
        data = json.loads(capsys.readouterr().out)
        assert data['spotify_playlist_id'] == 'pl1'
        assert data['spotify_client_secret'] is True
        assert data['authorized'] is False

    def test_config_reports_missing(self, capsys):
        self.settings.lastfm_api_key = None

        assert self.cli.run(['config']) == 1
        assert json.loads(capsys.readouterr().out)['missing'] == ['LASTFM_API_KEY']

    def test_run_prints_outcome(self, capsys):
        trigger = Mock()
        trigger.run.return_value = SelectionOutcome(
            run_id='dailypick_20231114_000000',
            status=OUTCOME_ADDED,
            message="Added 'Song1'",
            track=TrackIdentity(id='s1', uri='spotify:track:s1', name='Song1'),
        )

        with patch.object(CLI, '_create_trigger', return_value=trigger):
            exit_code = self.cli.run(['run'])

        assert exit_code == 0
        trigger.run.assert_called_once_with(dry_run=None)
        assert json.loads(capsys.readouterr().out)['track']['name'] == 'Song1'

    def test_run_dry_run_and_report_dir(self):
        trigger = Mock()
        trigger.run.return_value = SelectionOutcome(run_id='r', status='dry_run', message='')
        report_dir = os.path.join(self.temp_dir, 'reports')

        with patch.object(CLI, '_create_trigger', return_value=trigger):
            exit_code = self.cli.run(['run', '--dry-run', '--report-dir', report_dir])

        assert exit_code == 0
        assert self.settings.report_dir == report_dir
        trigger.run.assert_called_once_with(dry_run=True)

    def test_run_without_tokens_fails(self):
        assert self.cli.run(['run']) == 1

    def test_run_failure_returns_error_code(self):
        trigger = Mock()
        trigger.run.side_effect = TemporaryFailure('last.fm down')

        with patch.object(CLI, '_create_trigger', return_value=trigger):
            assert self.cli.run(['run']) == 1

    def test_missing_client_credentials(self):
        self.settings.spotify_client_secret = None

        assert self.cli.run(['run']) == 1

    @pytest.mark.parametrize('lookback', [0, -24])
    def test_run_rejects_non_positive_lookback(self, lookback):
        self.settings.lookback_hours = lookback

        with patch.object(CLI, '_create_trigger') as create_trigger:
            assert self.cli.run(['run']) == 1

        create_trigger.assert_not_called()

    def test_authorize_uses_prompt(self):
        with patch('dailypick.interfaces.cli.SpotifyCredentialProvider') as provider_cls:
            exit_code = self.cli.run(['authorize'])

        assert exit_code == 0
        provider_cls.return_value.ensure_authorized.assert_called_once_with(self.prompt)

    def test_authorize_failure(self):
        with patch('dailypick.interfaces.cli.SpotifyCredentialProvider') as provider_cls:
            provider_cls.return_value.ensure_authorized.side_effect = AuthorizationRequired('invalid_grant')

            assert self.cli.run(['authorize']) == 1

    @patch('dailypick.interfaces.cli.DailyScheduler')
    @patch('dailypick.interfaces.cli.HTTPServer')
    @patch.object(CLI, '_setup_signal_handlers')
    def test_serve_starts_scheduler_and_server(self, mock_signals, mock_server_cls, mock_scheduler_cls):
        exit_code = self.cli.run(['serve', '--port', '9000'])

        assert exit_code == 0
        mock_signals.assert_called_once()
        assert mock_scheduler_cls.call_args.args[1] == '0 0 * * *'
        mock_scheduler_cls.return_value.start.assert_called_once()
        mock_scheduler_cls.return_value.stop.assert_called_once()
        kwargs = mock_server_cls.call_args.kwargs
        assert kwargs['host'] == 'localhost'
        assert kwargs['port'] == 9000
        assert kwargs['trigger'].credentials is kwargs['credentials']
        mock_server_cls.return_value.run.assert_called_once()

    @patch('dailypick.interfaces.cli.DailyScheduler')
    @patch('dailypick.interfaces.cli.HTTPServer')
    @patch.object(CLI, '_setup_signal_handlers')
    def test_serve_without_schedule(self, mock_signals, mock_server_cls, mock_scheduler_cls):
        exit_code = self.cli.run(['serve', '--no-schedule'])

        assert exit_code == 0
        mock_scheduler_cls.assert_not_called()
        assert mock_server_cls.call_args.kwargs['port'] == 8888

    @pytest.mark.parametrize('schedule', ['off', ''])
    @patch('dailypick.interfaces.cli.DailyScheduler')
    @patch('dailypick.interfaces.cli.HTTPServer')
    @patch.object(CLI, '_setup_signal_handlers')
    def test_serve_schedule_disabled_by_setting(self, mock_signals, mock_server_cls, mock_scheduler_cls, schedule):
        self.settings.schedule = schedule

        self.cli.run(['serve'])

        mock_scheduler_cls.assert_not_called()

    @patch('dailypick.interfaces.cli.DailyScheduler')
    @patch('dailypick.interfaces.cli.HTTPServer')
    @patch.object(CLI, '_setup_signal_handlers')
    def test_serve_refreshes_stored_tokens(self, mock_signals, mock_server_cls, mock_scheduler_cls):
        with patch('dailypick.interfaces.cli.SpotifyCredentialProvider') as provider_cls:
            credentials = provider_cls.return_value
            credentials.load.return_value = True
            credentials.has_tokens.return_value = True

            self.cli.run(['serve'])

        credentials.refresh.assert_called_once()
        credentials.get_authorize_url.assert_not_called()

    @patch('dailypick.interfaces.cli.DailyScheduler')
    @patch('dailypick.interfaces.cli.HTTPServer')
    @patch.object(CLI, '_setup_signal_handlers')
    def test_serve_logs_authorize_url_when_unauthorized(self, mock_signals, mock_server_cls, mock_scheduler_cls):
        with patch('dailypick.interfaces.cli.SpotifyCredentialProvider') as provider_cls:
            credentials = provider_cls.return_value
            credentials.load.return_value = False
            credentials.has_tokens.return_value = False

            exit_code = self.cli.run(['serve'])

        assert exit_code == 0
        credentials.refresh.assert_not_called()
        credentials.get_authorize_url.assert_called_once()
        mock_server_cls.return_value.run.assert_called_once()
