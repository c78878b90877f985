"""Tests for the TrendBot HTTP API."""

from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from conftest import hashtag_data
from trendbot.app import app
from trendbot.core.models import DataType, ErrorCode, ErrorInfo, Platform, TimeRange, TrendData


@pytest.fixture
def engine():
    engine = Mock()
    engine.fetch_trends = AsyncMock(return_value=[
        TrendData.failed(
            Platform.TIKTOK,
            ErrorInfo(code=ErrorCode.EXPIRED_CREDENTIALS, message="reconnect", reauth_required=True),
            [DataType.HASHTAGS],
        ),
        hashtag_data(Platform.YOUTUBE, music=42),
    ])
    engine.predict.return_value = ["music", "dance", "summer"]
    engine.aggregator.history = [hashtag_data(Platform.YOUTUBE, music=1)] * 3
    engine.source_status.return_value = {
        "platforms": {"youtube": {"circuit": {"state": "closed"}}},
        "cache": {"hits": 1, "misses": 2},
    }
    return engine


@pytest.fixture
def client(engine):
    # No context manager: startup would build a real engine
    app.state.engine = engine
    yield TestClient(app)
    app.state.engine = None


def test_health_check(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "trendbot"}


def test_root_lists_endpoints(client):
    data = client.get("/").json()
    assert data["service"] == "trendbot"
    assert data["endpoints"]["trends"] == "/trends (POST)"


def test_fetch_trends(client, engine):
    response = client.post("/trends", json={
        "platforms": ["youtube", "tiktok"],
        "data_types": ["hashtags"],
        "time_range": "hour",
    })

    assert response.status_code == 200
    tiktok, youtube = response.json()
    assert tiktok["status"] == "failed"
    assert tiktok["error"]["reauth_required"] is True
    assert youtube["hashtags"] == [{"kind": "hashtag", "tag": "music", "volume": 42.0, "growth_rate": None}]

    query = engine.fetch_trends.await_args.args[0]
    assert query.platforms == frozenset({Platform.YOUTUBE, Platform.TIKTOK})
    assert query.data_types == frozenset({DataType.HASHTAGS})
    assert query.time_range == TimeRange.HOUR


def test_fetch_trends_defaults_to_all_data_types(client, engine):
    client.post("/trends", json={"platforms": ["twitter"]})

    query = engine.fetch_trends.await_args.args[0]
    assert query.data_types == frozenset(DataType)
    assert query.time_range == TimeRange.DAY


@pytest.mark.parametrize("body", [
    {"platforms": []},
    {"platforms": ["myspace"]},
    {"platforms": ["youtube"], "data_types": []},
    {"platforms": ["youtube"], "time_range": "decade"},
])
def test_invalid_query_rejected(client, engine, body):
    response = client.post("/trends", json=body)
    assert response.status_code == 422
    engine.fetch_trends.assert_not_awaited()


def test_predict_with_history(client, engine):
    history = [hashtag_data(Platform.YOUTUBE, music=5).model_dump(mode="json")]

    response = client.post("/trends/predict", json={"history": history, "top_k": 2})

    assert response.status_code == 200
    assert response.json() == {"predictions": ["music", "dance"], "history_size": 1}
    [passed] = engine.predict.call_args.args[0]
    assert passed.platform == Platform.YOUTUBE
    assert passed.hashtags[0].tag == "music"


def test_predict_uses_recent_results_without_history(client, engine):
    response = client.post("/trends/predict", json={})

    assert response.json() == {"predictions": ["music", "dance", "summer"], "history_size": 3}
    engine.predict.assert_called_once_with(None)


def test_sources_status(client):
    response = client.get("/sources/status")
    assert response.status_code == 200
    assert response.json()["platforms"]["youtube"]["circuit"]["state"] == "closed"


def test_engine_not_running():
    app.state.engine = None
    client = TestClient(app)

    response = client.get("/sources/status")

    assert response.status_code == 503
    assert client.get("/healthz").status_code == 200


def test_predict_top_k_above_default(client, engine):
    engine.predict.return_value = [f"tag{i:02d}" for i in range(40)]

    default = client.post("/trends/predict", json={}).json()["predictions"]
    larger = client.post("/trends/predict", json={"top_k": 30}).json()["predictions"]

    assert len(default) == 20
    assert larger == [f"tag{i:02d}" for i in range(30)]
