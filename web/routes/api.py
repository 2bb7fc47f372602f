"""JSON API for joins, captcha, boosts, stories, referrals and custom tasks.

The caller is authenticated upstream; the proxy forwards the principal in
``X-User-*`` headers which are trusted as-is here.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from flask import Blueprint, current_app, jsonify, request

from core.constants import CaptchaMode, StoryStatus
from core.exceptions import (
    ApplicationError,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PolicyError,
    RateLimitError,
    SubscriptionRequiredError,
    UpstreamError,
    ValidationError,
)
from core.logger import get_logger
from database.models import CustomTask, Giveaway, GiveawayCondition, StoryRequest, UserContext, format_ts
from services.async_runner import run_coroutine_sync
from services.engine import GiveawayEngine, get_engine
from services.lifecycle_service import check_invite_max
from services.participation_service import JoinInput
from utils.validators import (
    parse_int,
    parse_optional_int,
    parse_timestamp,
    validate_bonus_tickets,
    validate_source_tag,
)

logger = get_logger(__name__)

api_bp = Blueprint("api", __name__, url_prefix="/api")

_STATUS_BY_ERROR = (
    (ValidationError, 400),
    (AuthenticationError, 401),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (RateLimitError, 429),
    (PolicyError, 400),
    (UpstreamError, 502),
)


@api_bp.errorhandler(ApplicationError)
def handle_application_error(error: ApplicationError):
    status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(error, cls)), 500)
    payload: Dict[str, Any] = {"ok": False, "code": error.code, "error": error.message}
    headers = {}
    if isinstance(error, RateLimitError):
        payload["retryAfterSeconds"] = error.retry_after_seconds
        headers["Retry-After"] = str(error.retry_after_seconds)
    if isinstance(error, SubscriptionRequiredError) and error.channel_ids:
        payload["channelIds"] = list(error.channel_ids)
    if status >= 500:
        logger.error(f"API error {error.code}: {error.message}")
    return jsonify(payload), status, headers


def _engine() -> GiveawayEngine:
    return current_app.config.get("ENGINE") or get_engine()


def _current_user() -> UserContext:
    raw_id = request.headers.get("X-User-Id")
    if not raw_id:
        raise AuthenticationError("Missing X-User-Id header")
    try:
        user_id = parse_int(raw_id, "X-User-Id")
        created_at = parse_timestamp(request.headers.get("X-User-Created-At"), "X-User-Created-At")
    except ValidationError as exc:
        raise AuthenticationError(exc.message) from exc
    return UserContext(
        user_id=user_id,
        username=request.headers.get("X-Username") or None,
        first_name=request.headers.get("X-First-Name") or None,
        last_name=request.headers.get("X-Last-Name") or None,
        account_created_at=created_at,
    )


def _is_admin(user: UserContext) -> bool:
    return user.user_id in current_app.config.get("ADMIN_IDS", frozenset())


def _require_admin(user: UserContext) -> None:
    if not _is_admin(user):
        raise AuthorizationError("Only platform moderators can do this")


def _body() -> Dict[str, Any]:
    if not request.data:
        return {}
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _ok(**payload: Any):
    return jsonify({"ok": True, **payload})


def _giveaway_json(giveaway: Giveaway) -> Dict[str, Any]:
    return {
        "id": giveaway.id,
        "ownerUserId": giveaway.owner_user_id,
        "title": giveaway.title,
        "status": giveaway.status.value,
        "startAt": format_ts(giveaway.start_at),
        "endAt": format_ts(giveaway.end_at),
        "winnersCount": giveaway.winners_count,
        "totalParticipants": giveaway.total_participants,
    }


def _condition_json(condition: GiveawayCondition) -> Dict[str, Any]:
    return {
        "captchaMode": condition.captcha_mode.value,
        "inviteEnabled": condition.invite_enabled,
        "inviteMax": condition.invite_max,
        "boostEnabled": condition.boost_enabled,
        "boostChannelIds": list(condition.boost_channel_ids),
        "storiesEnabled": condition.stories_enabled,
        "requiredChannelIds": list(condition.required_channel_ids),
    }


def _story_json(story: Optional[StoryRequest]) -> Optional[Dict[str, Any]]:
    if story is None:
        return None
    return {
        "id": story.id,
        "userId": story.user_id,
        "status": story.status.value,
        "submittedAt": format_ts(story.submitted_at),
        "reviewedAt": format_ts(story.reviewed_at),
        "reviewedBy": story.reviewed_by,
        "rejectReason": story.reject_reason,
    }


def _task_json(task: CustomTask) -> Dict[str, Any]:
    return {"id": task.id, "title": task.title, "url": task.url, "bonusTickets": task.bonus_tickets}


_CONDITION_FIELDS = {
    "captchaMode": "captcha_mode",
    "inviteEnabled": "invite_enabled",
    "inviteMax": "invite_max",
    "boostEnabled": "boost_enabled",
    "boostChannelIds": "boost_channel_ids",
    "storiesEnabled": "stories_enabled",
    "requiredChannelIds": "required_channel_ids",
}

_TASK_FIELDS = {"title": "title", "url": "url", "bonusTickets": "bonus_tickets"}


def _parse_conditions(data: Dict[str, Any]) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    for key, name in _CONDITION_FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if name == "captcha_mode":
            try:
                value = CaptchaMode(value)
            except ValueError as exc:
                raise ValidationError(f"captchaMode must be one of {[m.value for m in CaptchaMode]}") from exc
        elif name in ("boost_channel_ids", "required_channel_ids"):
            if not isinstance(value, list):
                raise ValidationError(f"{key} must be a list")
            value = tuple(parse_int(item, key) for item in value)
        elif name == "invite_max":
            value = check_invite_max(parse_int(value, key))
        else:
            if not isinstance(value, bool):
                raise ValidationError(f"{key} must be a boolean")
        changes[name] = value
    return changes


# Giveaways

@api_bp.route("/giveaways", methods=["POST"])
def create_giveaway():
    user = _current_user()
    data = _body()
    engine = _engine()
    giveaway_id = run_coroutine_sync(engine.lifecycle.create_giveaway(
        owner_user_id=user.user_id,
        title=data.get("title") or "",
        start_at=parse_timestamp(data.get("startAt"), "startAt"),
        end_at=parse_timestamp(data.get("endAt"), "endAt"),
        winners_count=parse_int(data.get("winnersCount", 1), "winnersCount"),
        **_parse_conditions(data),
    ))
    giveaway = run_coroutine_sync(engine.lifecycle.get_giveaway(giveaway_id))
    return _ok(giveaway=_giveaway_json(giveaway)), 201


@api_bp.route("/giveaways/<int:giveaway_id>", methods=["GET"])
def get_giveaway(giveaway_id: int):
    engine = _engine()
    giveaway = run_coroutine_sync(engine.lifecycle.get_giveaway(giveaway_id))
    condition = run_coroutine_sync(engine.lifecycle.get_condition(giveaway_id))
    return _ok(giveaway=_giveaway_json(giveaway), conditions=_condition_json(condition))


@api_bp.route("/giveaways/<int:giveaway_id>/conditions", methods=["PATCH"])
def update_conditions(giveaway_id: int):
    user = _current_user()
    changes = _parse_conditions(_body())
    condition = run_coroutine_sync(_engine().lifecycle.update_condition(giveaway_id, user.user_id, **changes))
    return _ok(conditions=_condition_json(condition))


@api_bp.route("/giveaways/<int:giveaway_id>/submit", methods=["POST"])
def submit_giveaway(giveaway_id: int):
    user = _current_user()
    giveaway = run_coroutine_sync(_engine().lifecycle.submit(giveaway_id, user.user_id))
    return _ok(giveaway=_giveaway_json(giveaway))


@api_bp.route("/giveaways/<int:giveaway_id>/accept", methods=["POST"])
def accept_giveaway(giveaway_id: int):
    _require_admin(_current_user())
    giveaway = run_coroutine_sync(_engine().lifecycle.accept(giveaway_id))
    return _ok(giveaway=_giveaway_json(giveaway))


@api_bp.route("/giveaways/<int:giveaway_id>/reject", methods=["POST"])
def reject_giveaway(giveaway_id: int):
    _require_admin(_current_user())
    giveaway = run_coroutine_sync(_engine().lifecycle.reject(giveaway_id))
    return _ok(giveaway=_giveaway_json(giveaway))


@api_bp.route("/giveaways/<int:giveaway_id>/cancel", methods=["POST"])
def cancel_giveaway(giveaway_id: int):
    user = _current_user()
    owner = None if _is_admin(user) else user.user_id
    giveaway = run_coroutine_sync(_engine().lifecycle.cancel(giveaway_id, owner_user_id=owner))
    return _ok(giveaway=_giveaway_json(giveaway))


# Participation

@api_bp.route("/giveaways/<int:giveaway_id>/join", methods=["POST"])
def join_giveaway(giveaway_id: int):
    user = _current_user()
    data = _body()
    captcha_passed = data.get("captchaPassed", False)
    if not isinstance(captcha_passed, bool):
        raise ValidationError("captchaPassed must be a boolean")
    join_input = JoinInput(
        captcha_passed=captcha_passed,
        referrer_user_id=parse_optional_int(data.get("referrerUserId"), "referrerUserId"),
        source_tag=validate_source_tag(data.get("sourceTag")),
        time_since_open_ms=parse_optional_int(data.get("timeSinceOpenMs"), "timeSinceOpenMs"),
    )
    result = run_coroutine_sync(_engine().ledger.join(giveaway_id, user, join_input))
    return _ok(participation={
        "id": result.participation_id,
        "ticketsBase": result.tickets_base,
        "ticketsExtra": result.tickets_extra,
        "joinedAt": format_ts(result.joined_at),
        "fraudScore": result.fraud_score,
    }), 201


@api_bp.route("/giveaways/<int:giveaway_id>/check-subscription", methods=["POST"])
def check_subscription(giveaway_id: int):
    user = _current_user()
    status = run_coroutine_sync(_engine().ledger.check_subscriptions(giveaway_id, user.user_id))
    return _ok(
        subscribed=status.subscribed,
        channels=[{"id": channel_id, "subscribed": subscribed} for channel_id, subscribed in status.channels],
    )


@api_bp.route("/giveaways/<int:giveaway_id>/participation", methods=["GET"])
def my_participation(giveaway_id: int):
    user = _current_user()
    participation = run_coroutine_sync(_engine().ledger.get_participation(giveaway_id, user.user_id))
    return _ok(participation={
        "id": participation.id,
        "ticketsBase": participation.tickets_base,
        "ticketsExtra": participation.tickets_extra,
        "totalTickets": participation.total_tickets,
        "storiesShared": participation.stories_shared,
        "boostedChannelIds": list(participation.boosted_channel_ids),
        "joinedAt": format_ts(participation.joined_at),
    })


# Captcha

@api_bp.route("/captcha/generate", methods=["POST"])
def generate_captcha():
    user = _current_user()
    challenge = run_coroutine_sync(_engine().captcha.generate(user.user_id))
    return _ok(question=challenge.question, token=challenge.token)


@api_bp.route("/captcha/verify", methods=["POST"])
def verify_captcha():
    user = _current_user()
    data = _body()
    token = data.get("token")
    if not isinstance(token, str) or not token:
        raise ValidationError("token is required")
    answer = parse_int(data.get("answer"), "answer")
    result = run_coroutine_sync(_engine().captcha.verify(token, answer, user_id=user.user_id))
    payload: Dict[str, Any] = {"ok": result.ok}
    if result.attempts_left is not None:
        payload["attemptsLeft"] = result.attempts_left
    if result.reason:
        payload["error"] = result.reason
    return jsonify(payload)


# Boosts

@api_bp.route("/giveaways/<int:giveaway_id>/verify-boost", methods=["POST"])
def verify_boost(giveaway_id: int):
    user = _current_user()
    channel_id = parse_int(_body().get("channelId"), "channelId")
    result = run_coroutine_sync(_engine().boosts.verify_boost(giveaway_id, user.user_id, channel_id))
    return _ok(
        newBoosts=result.new_boosts,
        totalBoostsForChannel=result.total_boosts_for_channel,
        ticketsAdded=result.tickets_added,
        totalTickets=result.total_tickets,
    )


@api_bp.route("/giveaways/<int:giveaway_id>/my-boosts", methods=["GET"])
def my_boosts(giveaway_id: int):
    user = _current_user()
    status = run_coroutine_sync(_engine().boosts.get_boost_status(giveaway_id, user.user_id))
    return _ok(
        boostEnabled=status["boost_enabled"],
        maxBoostsPerChannel=status["max_boosts_per_channel"],
        channels=[
            {"channelId": c["channel_id"], "boosts": c["boosts"], "credited": c["credited"]}
            for c in status["channels"]
        ],
        totalTickets=status["total_tickets"],
    )


# Stories

@api_bp.route("/giveaways/<int:giveaway_id>/submit-story", methods=["POST"])
def submit_story(giveaway_id: int):
    user = _current_user()
    story = run_coroutine_sync(_engine().stories.submit(giveaway_id, user.user_id))
    return _ok(request=_story_json(story)), 201


@api_bp.route("/giveaways/<int:giveaway_id>/my-story-request", methods=["GET"])
def my_story_request(giveaway_id: int):
    user = _current_user()
    story = run_coroutine_sync(_engine().stories.get_my_request(giveaway_id, user.user_id))
    return _ok(request=_story_json(story))


@api_bp.route("/giveaways/<int:giveaway_id>/story-requests", methods=["GET"])
def list_story_requests(giveaway_id: int):
    user = _current_user()
    raw_status = request.args.get("status")
    try:
        status = StoryStatus(raw_status.upper()) if raw_status else None
    except ValueError as exc:
        raise ValidationError("Unknown story status filter") from exc
    listing = run_coroutine_sync(_engine().stories.list_requests(giveaway_id, user.user_id, status))
    return _ok(requests=[_story_json(r) for r in listing["requests"]], stats=listing["stats"])


@api_bp.route("/giveaways/<int:giveaway_id>/story-requests/<int:request_id>/approve", methods=["POST"])
def approve_story(giveaway_id: int, request_id: int):
    user = _current_user()
    story = run_coroutine_sync(_engine().stories.approve(giveaway_id, request_id, user.user_id))
    return _ok(request=_story_json(story))


@api_bp.route("/giveaways/<int:giveaway_id>/story-requests/<int:request_id>/reject", methods=["POST"])
def reject_story(giveaway_id: int, request_id: int):
    user = _current_user()
    reason = _body().get("reason")
    if reason is not None and not isinstance(reason, str):
        raise ValidationError("reason must be a string")
    story = run_coroutine_sync(_engine().stories.reject(giveaway_id, request_id, user.user_id, reason))
    return _ok(request=_story_json(story))


# Referrals

@api_bp.route("/giveaways/<int:giveaway_id>/my-referral", methods=["GET"])
def my_referral(giveaway_id: int):
    user = _current_user()
    stats = run_coroutine_sync(_engine().referrals.get_referral_stats(giveaway_id, user.user_id))
    return _ok(
        invitedCount=stats["invited_count"],
        inviteMax=stats["invite_max"],
        inviteEnabled=stats["invite_enabled"],
        ticketsFromInvites=stats["tickets_from_invites"],
    )


@api_bp.route("/giveaways/<int:giveaway_id>/my-invites", methods=["GET"])
def my_invites(giveaway_id: int):
    user = _current_user()
    invites = run_coroutine_sync(_engine().referrals.list_invites(giveaway_id, user.user_id))
    return _ok(invites=[{"userId": i["user_id"], "joinedAt": i["joined_at"]} for i in invites])


# Custom tasks

@api_bp.route("/giveaways/<int:giveaway_id>/custom-tasks", methods=["POST"])
def add_custom_task(giveaway_id: int):
    user = _current_user()
    data = _body()
    task = run_coroutine_sync(_engine().tasks.add_task(
        giveaway_id,
        user.user_id,
        title=data.get("title"),
        url=data.get("url"),
        bonus_tickets=validate_bonus_tickets(data.get("bonusTickets", 1)),
    ))
    return _ok(task=_task_json(task)), 201


@api_bp.route("/giveaways/<int:giveaway_id>/custom-tasks/<int:task_id>", methods=["PATCH"])
def update_custom_task(giveaway_id: int, task_id: int):
    user = _current_user()
    data = _body()
    changes = {name: data[key] for key, name in _TASK_FIELDS.items() if key in data}
    task = run_coroutine_sync(_engine().tasks.update_task(giveaway_id, user.user_id, task_id, **changes))
    return _ok(task=_task_json(task))


@api_bp.route("/giveaways/<int:giveaway_id>/custom-tasks/<int:task_id>", methods=["DELETE"])
def delete_custom_task(giveaway_id: int, task_id: int):
    user = _current_user()
    run_coroutine_sync(_engine().tasks.delete_task(giveaway_id, user.user_id, task_id))
    return _ok(deleted=task_id)


@api_bp.route("/giveaways/<int:giveaway_id>/custom-tasks", methods=["GET"])
def list_custom_tasks(giveaway_id: int):
    tasks = run_coroutine_sync(_engine().tasks.list_tasks(giveaway_id))
    return _ok(tasks=[_task_json(t) for t in tasks])


@api_bp.route("/giveaways/<int:giveaway_id>/custom-tasks/<int:task_id>/complete", methods=["POST"])
def complete_custom_task(giveaway_id: int, task_id: int):
    user = _current_user()
    result = run_coroutine_sync(_engine().tasks.complete_task(giveaway_id, user.user_id, task_id))
    return _ok(
        taskId=result.task_id,
        ticketsAdded=result.tickets_added,
        alreadyCompleted=result.already_completed,
        totalTickets=result.total_tickets,
    )


@api_bp.route("/giveaways/<int:giveaway_id>/my-custom-tasks", methods=["GET"])
def my_custom_tasks(giveaway_id: int):
    user = _current_user()
    completions = run_coroutine_sync(_engine().tasks.list_completions(giveaway_id, user.user_id))
    return _ok(completions=[
        {"taskId": c["task_id"], "completedAt": c["completed_at"], "bonusTickets": c["bonus_tickets"]}
        for c in completions
    ])
