"""API tests with TestClient against a temp DuckDB file."""

import pytest
from fastapi.testclient import TestClient

from predamm.api.main import app, get_app_settings


@pytest.fixture
def client(settings, temp_db):
    app.dependency_overrides[get_app_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def market(client):
    resp = client.post("/markets", json={"market_id": "derby", "outcome_ids": ["home", "away"], "total_liquidity": 1000})
    assert resp.status_code == 201
    return resp.json()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_create_market(market):
    assert market["market_id"] == "derby"
    assert market["version"] == 1
    assert market["valid"] is True
    assert [o["outcome_id"] for o in market["outcomes"]] == ["home", "away"]
    assert all(o["price"] == 0.5 for o in market["outcomes"])
    assert market["k_constant"] == 250000


def test_create_duplicate_market(client, market):
    resp = client.post("/markets", json={"market_id": "derby", "outcome_ids": ["home", "away"]})
    assert resp.status_code == 409
    assert resp.json()["code"] == "market_exists"


def test_create_market_validation(client):
    resp = client.post("/markets", json={"market_id": "m", "outcome_ids": ["only"]})
    assert resp.status_code == 422
    resp = client.post("/markets", json={"market_id": "m", "outcome_ids": ["a", "a"]})
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_market_setup"


def test_list_and_get_markets(client, market):
    resp = client.get("/markets")
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 1
    assert data["markets"][0]["outcome_count"] == 2

    resp = client.get("/markets/derby")
    assert resp.status_code == 200
    assert resp.json()["status"] == "open"


def test_unknown_market(client):
    resp = client.get("/markets/nope")
    assert resp.status_code == 404
    assert resp.json()["code"] == "market_not_found"


def test_prices(client, market):
    resp = client.get("/markets/derby/prices")
    assert resp.status_code == 200
    prices = resp.json()["prices"]
    assert sum(prices.values()) == pytest.approx(1.0)


def test_estimate_does_not_trade(client, market):
    resp = client.post("/markets/derby/estimate", json={"outcome_id": "home", "action": "buy", "amount": 100})
    assert resp.status_code == 200
    body = resp.json()
    assert body["action"] == "buy"
    assert body["shares_received"] == pytest.approx(500 / 6)
    assert body["effective_price"] == pytest.approx(1.2)
    assert "new_reserves" not in body
    assert client.get("/markets/derby").json()["version"] == 1


def test_execute_trade_and_ledger(client, market):
    resp = client.post(
        "/markets/derby/trades", json={"outcome_id": "home", "action": "buy", "amount": 100, "user_id": "alice"}
    )
    assert resp.status_code == 201
    trade = resp.json()
    assert trade["version"] == 2
    assert trade["new_prices"]["home"] > 0.5

    resp = client.post(
        "/markets/derby/trades", json={"outcome_id": "home", "action": "sell", "amount": 50, "user_id": "alice"}
    )
    assert resp.status_code == 201

    ledger = client.get("/markets/derby/ledger").json()
    assert ledger["trade_count"] == 2
    assert [t["action"] for t in ledger["trades"]] == ["sell", "buy"]
    assert ledger["trades"][1]["user_id"] == "alice"
    assert ledger["buy_volume"] == pytest.approx(100)


def test_trade_errors(client, market):
    resp = client.post("/markets/derby/trades", json={"outcome_id": "home", "action": "sell", "amount": 600})
    assert resp.status_code == 400
    assert resp.json()["code"] == "insufficient_shares"

    resp = client.post("/markets/derby/trades", json={"outcome_id": "draw", "action": "buy", "amount": 10})
    assert resp.status_code == 404
    assert resp.json()["code"] == "outcome_not_found"

    resp = client.post("/markets/derby/trades", json={"outcome_id": "home", "action": "buy", "amount": 0})
    assert resp.status_code == 422

    resp = client.post("/markets/derby/trades", json={"outcome_id": "home", "action": "hold", "amount": 5})
    assert resp.status_code == 422


def test_rebalance(client, market):
    client.post("/markets/derby/trades", json={"outcome_id": "home", "action": "buy", "amount": 250})
    client.post("/markets/derby/trades", json={"outcome_id": "home", "action": "sell", "amount": 100})
    resp = client.post("/markets/derby/rebalance")
    assert resp.status_code == 200
    body = resp.json()
    assert body["version"] == 4
    assert sum(o["reserve"] for o in body["outcomes"]) == pytest.approx(1000)


def test_sell_requires_own_position(client, market):
    client.post("/markets/derby/trades", json={"outcome_id": "home", "action": "buy", "amount": 100, "user_id": "alice"})
    resp = client.post(
        "/markets/derby/trades", json={"outcome_id": "home", "action": "sell", "amount": 10, "user_id": "bob"}
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "insufficient_shares"
    assert client.get("/markets/derby").json()["version"] == 2


def test_non_finite_amount_rejected(client, market):
    resp = client.post(
        "/markets/derby/trades",
        content='{"outcome_id": "home", "action": "buy", "amount": Infinity}',
        headers={"content-type": "application/json"},
    )
    assert resp.status_code == 422
    assert client.get("/markets/derby").json()["version"] == 1


def test_huge_buy_keeps_pool_tradeable(client, market):
    resp = client.post("/markets/derby/trades", json={"outcome_id": "home", "action": "buy", "amount": 1e300})
    assert resp.status_code == 201
    detail = client.get("/markets/derby").json()
    assert detail["valid"] is True
    assert all(o["reserve"] > 0 for o in detail["outcomes"])
    resp = client.post("/markets/derby/trades", json={"outcome_id": "away", "action": "buy", "amount": 10})
    assert resp.status_code == 201
