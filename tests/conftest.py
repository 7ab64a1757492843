import pathlib
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiolimiter import AsyncLimiter

camelotkey_path = pathlib.Path(__file__).resolve().parents[1] / "camelotkey"
sys.path.insert(0, str(camelotkey_path))


@pytest.fixture(autouse=True, scope="session")
def add_camelotkey_to_path():
    yield
    sys.path.remove(str(camelotkey_path))


@pytest.fixture(autouse=True)
async def close_musicbrainz_session():
    yield
    import modules.musicbrainz as musicbrainz
    await musicbrainz.close_http_session()


def make_response(status=200, payload=None):
    """Build a mock aiohttp response usable as ``async with session.get(...)``."""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=None)
    return response


def make_session(*responses):
    """Mock session whose ``get`` returns the given responses in order."""
    session = MagicMock()
    session.get = MagicMock(side_effect=list(responses))
    return session


def fast_rate_limiter():
    """Limiter with enough capacity that tests never wait."""
    return AsyncLimiter(1000, 1)
