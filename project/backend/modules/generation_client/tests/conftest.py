"""
Pytest fixtures for generation client tests.
"""
import pytest
from unittest.mock import Mock

from modules.generation_client.client import GenerationClient


@pytest.fixture
def make_prediction():
    """Factory for fake Replicate predictions that advance on reload()."""
    def _make_prediction(statuses, output=None, error=None, prediction_id="pred-123"):
        remaining = list(statuses)
        prediction = Mock()
        prediction.id = prediction_id
        prediction.status = remaining.pop(0)
        prediction.output = output
        prediction.error = error

        def _reload():
            if remaining:
                prediction.status = remaining.pop(0)

        prediction.reload = Mock(side_effect=_reload)
        prediction.cancel = Mock()
        return prediction
    return _make_prediction


@pytest.fixture
def replicate_client():
    client = Mock()
    client.predictions = Mock()
    return client


@pytest.fixture
def generation_client(settings, replicate_client):
    return GenerationClient(settings, client=replicate_client)
