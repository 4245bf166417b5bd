"""Decoded event types and the topic catalogue."""

from .models import (
    FeedEvent, RawEvent, BitsEvent, SubscriptionEvent, ModeratorActionEvent,
    CommerceEvent, FollowEvent, LeaderboardEntry, LeaderboardEvent,
    PredictionOutcome, PredictionEvent, RaidEvent, RewardEvent,
    VideoPlaybackEvent, WhisperEvent
)
from .catalog import CATALOG, default_registry

__all__ = [
    'FeedEvent', 'RawEvent', 'BitsEvent', 'SubscriptionEvent', 'ModeratorActionEvent',
    'CommerceEvent', 'FollowEvent', 'LeaderboardEntry', 'LeaderboardEvent',
    'PredictionOutcome', 'PredictionEvent', 'RaidEvent', 'RewardEvent',
    'VideoPlaybackEvent', 'WhisperEvent',
    'CATALOG', 'default_registry',
]
