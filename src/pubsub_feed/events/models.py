"""Decoded event types delivered to handlers."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class FeedEvent:
    """
    Base for decoded events.

    The dispatcher fills ``topic``, ``wire_topic`` and ``received_at`` after
    decoding, so decoders only deal with payload fields.
    """
    capability: str = ""
    topic = None
    wire_topic: Optional[str] = None
    received_at: Optional[float] = None


@dataclass
class RawEvent(FeedEvent):
    """Payload of a topic without a registered decoder."""
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BitsEvent(FeedEvent):
    """Bits cheered in a channel."""
    capability = "bits"

    username: Optional[str]
    bits_used: int
    total_bits_used: int
    user_id: Optional[str] = None
    channel_name: Optional[str] = None
    channel_id: Optional[str] = None
    chat_message: Optional[str] = None
    is_anonymous: bool = False
    context: Optional[str] = None
    time: Optional[str] = None


@dataclass
class SubscriptionEvent(FeedEvent):
    """Channel subscription, resubscription or gift."""
    capability = "subscriptions"

    context: str
    display_name: Optional[str] = None
    user_name: Optional[str] = None
    channel_name: Optional[str] = None
    sub_plan: Optional[str] = None
    is_gift: bool = False
    cumulative_months: Optional[int] = None
    streak_months: Optional[int] = None
    recipient_name: Optional[str] = None
    message: Optional[str] = None


@dataclass
class ModeratorActionEvent(FeedEvent):
    """Chat moderation action (ban, timeout, mode changes...)."""
    capability = "moderator"

    action: str
    created_by: Optional[str] = None
    created_by_user_id: Optional[str] = None
    args: List[str] = field(default_factory=list)
    target_user_id: Optional[str] = None
    target_user_login: Optional[str] = None

    @property
    def target(self) -> Optional[str]:
        if self.args:
            return self.args[0]
        return self.target_user_login

    @property
    def detail(self) -> Optional[str]:
        """Second action argument: ban reason, timeout duration, deleted text or hosted channel."""
        return self.args[1] if len(self.args) > 1 else None

    @property
    def extra(self) -> Optional[str]:
        return self.args[2] if len(self.args) > 2 else None


@dataclass
class CommerceEvent(FeedEvent):
    capability = "commerce"

    item_description: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    channel_name: Optional[str] = None
    purchase_message: Optional[str] = None
    supports_channel: bool = False


@dataclass
class FollowEvent(FeedEvent):
    capability = "follows"

    username: str
    display_name: Optional[str] = None
    user_id: Optional[str] = None


@dataclass
class LeaderboardEntry:
    place: int
    user_id: str
    score: int


@dataclass
class LeaderboardEvent(FeedEvent):
    """Weekly leaderboard update (bits or gifted subs)."""
    capability = "leaderboard"

    domain: str
    top: List[LeaderboardEntry] = field(default_factory=list)
    time_aggregation: Optional[str] = None


@dataclass
class PredictionOutcome:
    outcome_id: str
    title: str
    total_points: int = 0
    total_users: int = 0
    color: Optional[str] = None


@dataclass
class PredictionEvent(FeedEvent):
    """Channel prediction created or updated."""
    capability = "predictions"

    event_type: str
    prediction_id: str
    title: str
    status: str
    outcomes: List[PredictionOutcome] = field(default_factory=list)
    winning_outcome_id: Optional[str] = None

    @property
    def winning_outcome(self) -> Optional[PredictionOutcome]:
        """Outcome matching ``winning_outcome_id``; None when unset or not among the outcomes."""
        if not self.winning_outcome_id:
            return None
        for outcome in self.outcomes:
            if outcome.outcome_id == self.winning_outcome_id:
                return outcome
        return None


@dataclass
class RaidEvent(FeedEvent):
    """Outgoing raid update or go."""
    capability = "raid"

    event_type: str
    raid_id: str
    target_id: Optional[str] = None
    target_login: Optional[str] = None
    target_display_name: Optional[str] = None
    viewer_count: Optional[int] = None
    remaining_duration_seconds: Optional[int] = None


@dataclass
class RewardEvent(FeedEvent):
    """Channel points redemption or custom reward change."""
    capability = "rewards"

    event_type: str
    reward_title: str
    reward_id: Optional[str] = None
    cost: Optional[int] = None
    display_name: Optional[str] = None
    status: Optional[str] = None
    user_input: Optional[str] = None


@dataclass
class VideoPlaybackEvent(FeedEvent):
    """Stream up/down, viewer count or commercial."""
    capability = "video-playback"

    event_type: str
    server_time: Optional[float] = None
    viewers: Optional[int] = None
    length: Optional[int] = None


@dataclass
class WhisperEvent(FeedEvent):
    capability = "whispers"

    event_type: str
    body: Optional[str] = None
    sender_display_name: Optional[str] = None
    recipient_display_name: Optional[str] = None
    thread_id: Optional[str] = None
