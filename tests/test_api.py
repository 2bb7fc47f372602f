"""Integration tests for the JSON API."""

import asyncio
import threading

import pytest

from database import OptimizedSQLitePool, run_migrations
from services.async_runner import set_main_loop
from services.engine import GiveawayEngine
from services.expiring_store import InMemoryExpiringStore
from tests.conftest import FakeBoostChecker, FakeSubscriptionChecker, FixedFraudPolicy, make_config, solve
from web import create_app

ADMIN = 1
OWNER = 2
MEMBER = 3


def headers(user_id, **extra):
    return {"X-User-Id": str(user_id), "X-Username": f"member_{user_id}", **extra}


@pytest.fixture
def client(tmp_path):
    """Flask test client whose services run on a background event loop."""
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    set_main_loop(loop)

    config = make_config(tmp_path, admin_ids=(ADMIN,))

    async def setup():
        pool = OptimizedSQLitePool(config.database_path, pool_size=2)
        await pool.init_pool()
        await run_migrations(pool)
        engine = GiveawayEngine.build(
            config,
            pool,
            InMemoryExpiringStore(),
            subscriptions=FakeSubscriptionChecker(),
            boost_checker=FakeBoostChecker(),
            fraud_policy=FixedFraudPolicy(0),
        )
        return pool, engine

    pool, engine = asyncio.run_coroutine_threadsafe(setup(), loop).result(timeout=10)
    app = create_app(config, engine=engine, testing=True)

    yield app.test_client()

    asyncio.run_coroutine_threadsafe(pool.close(), loop).result(timeout=10)
    loop.call_soon_threadsafe(loop.stop)
    thread.join(timeout=5)
    loop.close()
    set_main_loop(None)


def create_active(client, **body):
    body.setdefault("title", "Weekly prize")
    response = client.post("/api/giveaways", json=body, headers=headers(OWNER))
    assert response.status_code == 201
    giveaway_id = response.get_json()["giveaway"]["id"]
    assert client.post(f"/api/giveaways/{giveaway_id}/submit", headers=headers(OWNER)).status_code == 200
    assert client.post(f"/api/giveaways/{giveaway_id}/accept", headers=headers(ADMIN)).status_code == 200
    return giveaway_id


def test_requires_principal(client):
    response = client.post("/api/giveaways", json={"title": "x"})
    assert response.status_code == 401
    assert response.get_json()["code"] == "UNAUTHORIZED"


def test_giveaway_flow(client):
    """Test create, moderate and read back a giveaway."""
    response = client.post(
        "/api/giveaways",
        json={"title": "Prize", "captchaMode": "SUSPICIOUS_ONLY", "requiredChannelIds": [-1001]},
        headers=headers(OWNER),
    )
    assert response.status_code == 201
    giveaway = response.get_json()["giveaway"]
    assert giveaway["status"] == "DRAFT"

    gid = giveaway["id"]
    client.post(f"/api/giveaways/{gid}/submit", headers=headers(OWNER))

    forbidden = client.post(f"/api/giveaways/{gid}/accept", headers=headers(OWNER))
    assert forbidden.status_code == 403
    assert forbidden.get_json()["code"] == "FORBIDDEN"

    accepted = client.post(f"/api/giveaways/{gid}/accept", headers=headers(ADMIN))
    assert accepted.get_json()["giveaway"]["status"] == "ACTIVE"

    body = client.get(f"/api/giveaways/{gid}").get_json()
    assert body["conditions"]["captchaMode"] == "SUSPICIOUS_ONLY"
    assert body["conditions"]["requiredChannelIds"] == [-1001]

    frozen = client.patch(f"/api/giveaways/{gid}/conditions", json={"inviteEnabled": True}, headers=headers(OWNER))
    assert frozen.status_code == 409
    assert frozen.get_json()["code"] == "INVALID_TRANSITION"


def test_join_and_duplicate(client):
    gid = create_active(client)

    response = client.post(f"/api/giveaways/{gid}/join", json={"sourceTag": "post_1"}, headers=headers(MEMBER))
    assert response.status_code == 201
    assert response.get_json()["participation"]["ticketsBase"] == 1

    again = client.post(f"/api/giveaways/{gid}/join", headers=headers(MEMBER))
    assert again.status_code == 409
    assert again.get_json()["code"] == "ALREADY_JOINED"

    mine = client.get(f"/api/giveaways/{gid}/participation", headers=headers(MEMBER)).get_json()
    assert mine["participation"]["totalTickets"] == 1


def test_subscription_required_lists_channels(client):
    gid = create_active(client, requiredChannelIds=[-1001])
    response = client.post(f"/api/giveaways/{gid}/join", headers=headers(MEMBER))
    assert response.status_code == 400
    body = response.get_json()
    assert body["code"] == "SUBSCRIPTION_REQUIRED"
    assert body["channelIds"] == [-1001]


def test_captcha_then_join(client):
    gid = create_active(client, captchaMode="ALL")

    blocked = client.post(f"/api/giveaways/{gid}/join", json={"captchaPassed": True}, headers=headers(MEMBER))
    assert blocked.get_json()["code"] == "CAPTCHA_REQUIRED"

    challenge = client.post("/api/captcha/generate", headers=headers(MEMBER)).get_json()
    wrong = client.post(
        "/api/captcha/verify",
        json={"token": challenge["token"], "answer": solve(challenge["question"]) + 50},
        headers=headers(MEMBER),
    ).get_json()
    assert wrong == {"ok": False, "attemptsLeft": 4, "error": "Wrong answer"}

    passed = client.post(
        "/api/captcha/verify",
        json={"token": challenge["token"], "answer": solve(challenge["question"])},
        headers=headers(MEMBER),
    ).get_json()
    assert passed == {"ok": True}

    joined = client.post(f"/api/giveaways/{gid}/join", json={"captchaPassed": True}, headers=headers(MEMBER))
    assert joined.status_code == 201


def test_captcha_rate_limit_header(client):
    for _ in range(10):
        assert client.post("/api/captcha/generate", headers=headers(MEMBER)).status_code == 200

    response = client.post("/api/captcha/generate", headers=headers(MEMBER))
    assert response.status_code == 429
    assert int(response.headers["Retry-After"]) > 0
    assert response.get_json()["retryAfterSeconds"] == int(response.headers["Retry-After"])


def test_boost_channel_must_be_configured(client):
    gid = create_active(client, boostEnabled=True, boostChannelIds=[-2002])
    client.post(f"/api/giveaways/{gid}/join", headers=headers(MEMBER))

    response = client.post(f"/api/giveaways/{gid}/verify-boost", json={"channelId": -3003}, headers=headers(MEMBER))
    assert response.status_code == 400
    assert response.get_json()["code"] == "CHANNEL_NOT_CONFIGURED"


def test_bad_payloads(client):
    response = client.post("/api/giveaways", json={"title": "x", "inviteMax": -1}, headers=headers(OWNER))
    assert response.status_code == 400
    assert response.get_json()["code"] == "VALIDATION_ERROR"

    assert client.get("/api/giveaways/999").status_code == 404
    assert client.get("/api/nothing-here").get_json()["code"] == "NOT_FOUND"


def test_out_of_range_input_is_rejected(client):
    gid = create_active(client)

    huge_referrer = client.post(
        f"/api/giveaways/{gid}/join", json={"referrerUserId": 2 ** 70}, headers=headers(MEMBER)
    )
    assert huge_referrer.status_code == 400
    assert huge_referrer.get_json()["code"] == "VALIDATION_ERROR"
    mine = client.get(f"/api/giveaways/{gid}/participation", headers=headers(MEMBER))
    assert mine.get_json()["code"] == "NOT_PARTICIPATING"

    far_future = client.post(
        f"/api/giveaways/{gid}/join", headers=headers(MEMBER, **{"X-User-Created-At": "99999999999999"})
    )
    assert far_future.status_code == 401
    assert far_future.get_json()["code"] == "UNAUTHORIZED"

    huge_id = client.post(f"/api/giveaways/{2 ** 70}/join", headers=headers(MEMBER))
    assert huge_id.status_code == 404
    assert huge_id.get_json()["code"] == "NOT_FOUND"

    huge_user = client.post(f"/api/giveaways/{gid}/join", headers=headers(2 ** 64))
    assert huge_user.status_code == 401

    bad_date = client.post("/api/giveaways", json={"title": "x", "endAt": 10 ** 20}, headers=headers(OWNER))
    assert bad_date.status_code == 400
    assert bad_date.get_json()["code"] == "VALIDATION_ERROR"


def test_check_subscription_reports_channels(client):
    gid = create_active(client, requiredChannelIds=[-1001, -1002])
    response = client.post(f"/api/giveaways/{gid}/check-subscription", headers=headers(MEMBER))
    assert response.status_code == 200
    body = response.get_json()
    assert body["subscribed"] is False
    assert body["channels"] == [{"id": -1002, "subscribed": False}, {"id": -1001, "subscribed": False}]


def test_custom_task_edit_and_delete(client):
    created = client.post("/api/giveaways", json={"title": "Prize"}, headers=headers(OWNER)).get_json()
    gid = created["giveaway"]["id"]
    task = client.post(
        f"/api/giveaways/{gid}/custom-tasks", json={"title": "Follow", "bonusTickets": 2}, headers=headers(OWNER)
    ).get_json()["task"]

    edited = client.patch(
        f"/api/giveaways/{gid}/custom-tasks/{task['id']}",
        json={"title": "Follow and like", "bonusTickets": 3},
        headers=headers(OWNER),
    )
    assert edited.status_code == 200
    assert edited.get_json()["task"]["bonusTickets"] == 3

    stranger = client.delete(f"/api/giveaways/{gid}/custom-tasks/{task['id']}", headers=headers(MEMBER))
    assert stranger.status_code == 403

    deleted = client.delete(f"/api/giveaways/{gid}/custom-tasks/{task['id']}", headers=headers(OWNER))
    assert deleted.get_json() == {"ok": True, "deleted": task["id"]}
    assert client.get(f"/api/giveaways/{gid}/custom-tasks").get_json()["tasks"] == []


def test_health_and_metrics(client):
    health = client.get("/health")
    assert health.status_code == 200
    assert health.get_json() == {"status": "ok", "database": True}

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert b"giveaway_join_outcomes_total" in metrics.data
