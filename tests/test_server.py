"""
Tests for the HTTP API.
"""

import pytest
import numpy as np
import sys
import os
from fastapi.testclient import TestClient

# Add the parent directory to the path to import the module
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from clustermath.components.config import Config, ConfigManager
from clustermath.components.server import CaseData, Server, ServerManager, case_matrix_from


FOUR_POINTS = [[0.0, 0.0], [0.0, 1.0], [5.0, 5.0], [5.0, 6.0]]


@pytest.fixture
def client():
    return TestClient(Server(Config()).app)


class TestCaseData:
    """Tests for request data conversion."""

    def test_nulls_become_missing(self):
        """JSON nulls in continuous data are missing values."""
        cases = case_matrix_from(CaseData(continuous=[[1.0, None], [2.0, 3.0]], labels=['p', 'q']))
        assert cases.n_cases == 2
        assert cases.labels() == ['p', 'q']
        assert np.isnan(cases.continuous_values()[0, 1])


class TestServer:
    """Tests for the Server routes."""

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.json() == {'status': 'ok'}

    def test_config(self, client):
        response = client.get('/api/v1/config')
        assert response.status_code == 200
        assert response.json()['twostep']['capacity'] == 512

    def test_hierarchical(self, client):
        """The four-point fixture over HTTP."""
        response = client.post('/api/v1/hierarchical', json={
            'data': {'continuous': FOUR_POINTS, 'labels': ['a', 'b', 'c', 'd']},
            'options': {'membership': {'mode': 'single', 'k': 2}},
            'outputs': ['schedule', 'dendrogram', 'membership']
        })
        assert response.status_code == 200

        body = response.json()
        assert [s['coefficient'] for s in body['schedule']['stages']] == pytest.approx([1.0, 1.0, 50.5])
        assert body['dendrogram']['root'] == 6
        assert body['membership'] == {'2': [1, 1, 2, 2]}
        assert body['proximity'] is None
        assert body['diagnostics']['errors'] == {}

    def test_hierarchical_partial_failure(self, client):
        """Per-output failures come back in the diagnostics."""
        response = client.post('/api/v1/hierarchical', json={
            'data': {'continuous': [[1.0, 2.0]]},
            'outputs': ['proximity', 'dendrogram']
        })
        assert response.status_code == 200
        body = response.json()
        assert body['proximity'] is not None
        assert 'dendrogram' in body['diagnostics']['errors']

    def test_bad_method(self, client):
        """Unknown options are a bad request."""
        response = client.post('/api/v1/hierarchical', json={
            'data': {'continuous': FOUR_POINTS},
            'options': {'method': 'kmeans'}
        })
        assert response.status_code == 400
        assert 'kmeans' in response.json()['detail']

    def test_invalid_body(self, client):
        """Malformed bodies fail validation."""
        response = client.post('/api/v1/hierarchical', json={'data': {'continuous': 'nope'}})
        assert response.status_code == 422

    def test_twostep(self, client):
        """Two-step clustering over HTTP."""
        rows = [[0.0, 0.1 * i] for i in range(10)] + [[10.0, 10.0 + 0.1 * i] for i in range(10)]
        response = client.post('/api/v1/twostep', json={
            'data': {'continuous': rows},
            'options': {'clusters': {'mode': 'fixed', 'fixed-k': 2}}
        })
        assert response.status_code == 200

        body = response.json()
        assert body['summary']['k'] == 2
        labels = body['case_labels']
        assert len(set(labels[:10])) == 1
        assert labels[0] != labels[10]


class TestServerManager:
    """Tests for the ServerManager singleton."""

    def test_singleton(self):
        ConfigManager.reset()
        ServerManager.shutdown()
        server = ServerManager.get_server()
        assert ServerManager.get_server() is server
        assert not server.running
        ServerManager.shutdown()
        assert ServerManager.get_server() is not server
        ServerManager.shutdown()
