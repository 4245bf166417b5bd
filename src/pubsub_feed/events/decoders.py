"""Payload decoders: platform JSON -> event dataclasses.

Every decoder takes the parsed message object of a MESSAGE frame. Fields the
event cannot exist without raise DecodeError; everything else is optional.
"""

import json
from typing import Any, Dict, List, Optional, Tuple, Type, Union

from ..exceptions import DecodeError
from .models import (
    BitsEvent, SubscriptionEvent, ModeratorActionEvent, CommerceEvent,
    FollowEvent, LeaderboardEntry, LeaderboardEvent, PredictionOutcome,
    PredictionEvent, RaidEvent, RewardEvent, VideoPlaybackEvent, WhisperEvent
)


TypeSpec = Union[Type, Tuple[Type, ...]]


def _as_object(value: Any, context: str) -> Dict[str, Any]:
    """Nested objects sometimes arrive as JSON text."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise DecodeError(f"{context}: invalid nested JSON: {e}")
    if not isinstance(value, dict):
        raise DecodeError(f"{context}: expected an object, got {type(value).__name__}")
    return value


def _require(data: Dict[str, Any], key: str, types: TypeSpec, context: str) -> Any:
    value = data.get(key)
    if value is None:
        raise DecodeError(f"{context}: missing required field {key!r}")
    if not isinstance(value, types) or isinstance(value, bool) and bool not in _tuple(types):
        raise DecodeError(f"{context}: field {key!r} has unexpected type {type(value).__name__}")
    return value


def _optional(data: Dict[str, Any], key: str, types: TypeSpec, default: Any = None) -> Any:
    value = data.get(key)
    if value is None or not isinstance(value, types):
        return default
    if isinstance(value, bool) and bool not in _tuple(types):
        return default
    return value


def _tuple(types: TypeSpec) -> Tuple[Type, ...]:
    return types if isinstance(types, tuple) else (types,)


def _int(data: Dict[str, Any], key: str, context: str, required: bool = False) -> Optional[int]:
    """Integers are sometimes sent as strings."""
    value = data.get(key)
    if value is None:
        if required:
            raise DecodeError(f"{context}: missing required field {key!r}")
        return None
    if isinstance(value, bool):
        raise DecodeError(f"{context}: field {key!r} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise DecodeError(f"{context}: field {key!r} must be an integer, got {value!r}")


def _id(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None or isinstance(value, bool):
        return None
    return str(value)


def decode_bits(payload: Dict[str, Any]) -> BitsEvent:
    context = "bits"
    data = _as_object(payload.get("data", payload), context)
    # v2 envelopes carry the flag beside "data", older ones inside it
    is_anonymous = _optional(payload, "is_anonymous", bool)
    if is_anonymous is None:
        is_anonymous = bool(_optional(data, "is_anonymous", bool, False))
    username = _optional(data, "user_name", str)
    if username is None and not is_anonymous:
        raise DecodeError(f"{context}: missing required field 'user_name'")

    return BitsEvent(
        username=username,
        bits_used=_int(data, "bits_used", context, required=True),
        total_bits_used=_int(data, "total_bits_used", context, required=True),
        user_id=_id(data, "user_id"),
        channel_name=_optional(data, "channel_name", str),
        channel_id=_id(data, "channel_id"),
        chat_message=_optional(data, "chat_message", str),
        is_anonymous=is_anonymous,
        context=_optional(data, "context", str),
        time=_optional(data, "time", str),
    )


def decode_subscription(payload: Dict[str, Any]) -> SubscriptionEvent:
    context = "subscriptions"
    sub_message = payload.get("sub_message")
    message = None
    if isinstance(sub_message, dict):
        message = _optional(sub_message, "message", str)

    return SubscriptionEvent(
        context=_require(payload, "context", str, context),
        display_name=_optional(payload, "display_name", str),
        user_name=_optional(payload, "user_name", str),
        channel_name=_optional(payload, "channel_name", str),
        sub_plan=_optional(payload, "sub_plan", str),
        is_gift=bool(_optional(payload, "is_gift", bool, False)),
        cumulative_months=_int(payload, "cumulative_months", context),
        streak_months=_int(payload, "streak_months", context),
        recipient_name=(
            _optional(payload, "recipient_display_name", str)
            or _optional(payload, "recipient_user_name", str)
        ),
        message=message,
    )


def decode_moderator_action(payload: Dict[str, Any]) -> ModeratorActionEvent:
    context = "moderator"
    data = _as_object(payload.get("data", payload), context)
    args = data.get("args") or []
    if not isinstance(args, list):
        raise DecodeError(f"{context}: field 'args' must be a list")

    return ModeratorActionEvent(
        action=_require(data, "moderation_action", str, context),
        created_by=_optional(data, "created_by", str),
        created_by_user_id=_id(data, "created_by_user_id"),
        args=[str(arg) for arg in args],
        target_user_id=_id(data, "target_user_id"),
        target_user_login=_optional(data, "target_user_login", str),
    )


def decode_commerce(payload: Dict[str, Any]) -> CommerceEvent:
    context = "commerce"
    purchase = payload.get("purchase_message")
    purchase_message = None
    if isinstance(purchase, dict):
        purchase_message = _optional(purchase, "message", str)
    elif isinstance(purchase, str):
        purchase_message = purchase

    return CommerceEvent(
        item_description=_require(payload, "item_description", str, context),
        username=_optional(payload, "user_name", str),
        display_name=_optional(payload, "display_name", str),
        channel_name=_optional(payload, "channel_name", str),
        purchase_message=purchase_message,
        supports_channel=bool(_optional(payload, "supports_channel", bool, False)),
    )


def decode_follow(payload: Dict[str, Any]) -> FollowEvent:
    context = "follows"
    return FollowEvent(
        username=_require(payload, "username", str, context),
        display_name=_optional(payload, "display_name", str),
        user_id=_id(payload, "user_id"),
    )


def decode_leaderboard(payload: Dict[str, Any]) -> LeaderboardEvent:
    context = "leaderboard"
    identifier = payload.get("identifier")
    identifier = identifier if isinstance(identifier, dict) else {}
    top = _require(payload, "top", list, context)

    entries: List[LeaderboardEntry] = []
    for i, raw in enumerate(top):
        if not isinstance(raw, dict):
            raise DecodeError(f"{context}: top[{i}] must be an object")
        entries.append(LeaderboardEntry(
            place=_int(raw, "rank", f"{context}.top[{i}]", required=True),
            user_id=str(_require(raw, "entry_key", (str, int), f"{context}.top[{i}]")),
            score=_int(raw, "score", f"{context}.top[{i}]", required=True),
        ))

    return LeaderboardEvent(
        domain=_optional(identifier, "domain", str, ""),
        top=entries,
        time_aggregation=_optional(identifier, "time_aggregation", str),
    )


def decode_prediction(payload: Dict[str, Any]) -> PredictionEvent:
    context = "predictions"
    data = _as_object(_require(payload, "data", (dict, str), context), context)
    event = _as_object(_require(data, "event", (dict, str), context), f"{context}.event")

    outcomes: List[PredictionOutcome] = []
    for i, raw in enumerate(_optional(event, "outcomes", list, [])):
        if not isinstance(raw, dict):
            raise DecodeError(f"{context}: outcomes[{i}] must be an object")
        outcome_context = f"{context}.outcomes[{i}]"
        outcomes.append(PredictionOutcome(
            outcome_id=str(_require(raw, "id", (str, int), outcome_context)),
            title=_require(raw, "title", str, outcome_context),
            total_points=_int(raw, "total_points", outcome_context) or 0,
            total_users=_int(raw, "total_users", outcome_context) or 0,
            color=_optional(raw, "color", str),
        ))

    return PredictionEvent(
        event_type=_require(payload, "type", str, context),
        prediction_id=str(_require(event, "id", (str, int), context)),
        title=_require(event, "title", str, context),
        status=_require(event, "status", str, context).upper(),
        outcomes=outcomes,
        winning_outcome_id=_id(event, "winning_outcome_id"),
    )


def decode_raid(payload: Dict[str, Any]) -> RaidEvent:
    context = "raid"
    raid = _as_object(_require(payload, "raid", (dict, str), context), context)
    return RaidEvent(
        event_type=_require(payload, "type", str, context),
        raid_id=str(_require(raid, "id", (str, int), context)),
        target_id=_id(raid, "target_id"),
        target_login=_optional(raid, "target_login", str),
        target_display_name=_optional(raid, "target_display_name", str),
        viewer_count=_int(raid, "viewer_count", context),
        remaining_duration_seconds=_int(raid, "remaining_duration_seconds", context),
    )


# reward payload key per message type
_REWARD_KEYS = {
    "custom-reward-created": "new_reward",
    "custom-reward-updated": "updated_reward",
    "custom-reward-deleted": "deleted_reward",
}


def decode_reward(payload: Dict[str, Any]) -> RewardEvent:
    context = "rewards"
    event_type = _require(payload, "type", str, context)
    data = _as_object(_require(payload, "data", (dict, str), context), context)

    redemption = None
    if event_type in _REWARD_KEYS:
        reward = _as_object(_require(data, _REWARD_KEYS[event_type], (dict, str), context), context)
    else:
        redemption = _as_object(_require(data, "redemption", (dict, str), context), f"{context}.redemption")
        reward = _as_object(_require(redemption, "reward", (dict, str), context), f"{context}.reward")

    display_name = status = user_input = None
    if redemption is not None:
        user = redemption.get("user")
        if isinstance(user, dict):
            display_name = _optional(user, "display_name", str) or _optional(user, "login", str)
        status = _optional(redemption, "status", str)
        user_input = _optional(redemption, "user_input", str)

    return RewardEvent(
        event_type=event_type,
        reward_title=_require(reward, "title", str, context),
        reward_id=_id(reward, "id"),
        cost=_int(reward, "cost", context),
        display_name=display_name,
        status=status,
        user_input=user_input,
    )


def decode_video_playback(payload: Dict[str, Any]) -> VideoPlaybackEvent:
    context = "video-playback"
    event_type = _require(payload, "type", str, context)
    server_time = payload.get("server_time")
    if isinstance(server_time, bool) or not isinstance(server_time, (int, float)):
        server_time = None

    return VideoPlaybackEvent(
        event_type=event_type,
        server_time=server_time,
        viewers=_int(payload, "viewers", context, required=event_type == "viewcount"),
        length=_int(payload, "length", context),
    )


def decode_whisper(payload: Dict[str, Any]) -> WhisperEvent:
    context = "whispers"
    event_type = _require(payload, "type", str, context)
    data_object = payload.get("data_object")
    if data_object is None:
        data_object = payload.get("data", {})
    data_object = _as_object(data_object, context)

    if event_type in ("whisper_received", "whisper_sent"):
        body = _require(data_object, "body", str, context)
    else:
        body = _optional(data_object, "body", str)

    tags = data_object.get("tags")
    recipient = data_object.get("recipient")

    return WhisperEvent(
        event_type=event_type,
        body=body,
        sender_display_name=_optional(tags, "display_name", str) if isinstance(tags, dict) else None,
        recipient_display_name=_optional(recipient, "display_name", str) if isinstance(recipient, dict) else None,
        thread_id=_optional(data_object, "thread_id", str),
    )
