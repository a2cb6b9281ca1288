import pytest

from fakes import make_settings


@pytest.fixture
def settings():
    return make_settings()
