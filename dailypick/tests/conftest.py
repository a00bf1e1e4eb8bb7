import os
import sys
import pytest


def _ensure_project_root_on_sys_path() -> None:
    here = os.path.dirname(__file__)
    project_root = os.path.abspath(os.path.join(here, "..", ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)


_ensure_project_root_on_sys_path()


@pytest.fixture(autouse=True)
def _isolate_dailypick_env():
    """Ensure configuration variables from a developer .env do not leak into tests."""
    keys = [
        'SPOTIFY_CLIENT_ID', 'SPOTIFY_CLIENT_SECRET', 'SPOTIFY_REDIRECT_URI', 'SPOTIFY_PLAYLIST_ID',
        'LASTFM_USER', 'LASTFM_API_KEY', 'HOST', 'PORT',
        'DAILYPICK_TOKEN_FILE', 'DAILYPICK_SCHEDULE', 'DAILYPICK_LOOKBACK_HOURS',
        'DAILYPICK_SEARCH_MARKET', 'DAILYPICK_SEARCH_LIMIT', 'DAILYPICK_REPORT_DIR', 'DAILYPICK_DRY_RUN',
    ]
    backup = {k: os.environ.get(k) for k in keys}
    for k in keys:
        os.environ.pop(k, None)
    try:
        yield
    finally:
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v
