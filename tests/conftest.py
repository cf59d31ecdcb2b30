import pytest

from tests.helpers import FakeProvider


@pytest.fixture
def provider():
    return FakeProvider()
