"""Topic catalogue: capability -> wire topic template -> payload decoder."""

from typing import List

from ..topics import TopicDefinition, TopicRegistry
from . import decoders


CATALOG: List[TopicDefinition] = [
    TopicDefinition(
        capability="bits",
        name="channel-bits-events-v2",
        scope_template="{channel_id}",
        decoder=decoders.decode_bits,
        description="Bits cheered in the channel",
    ),
    TopicDefinition(
        capability="subscriptions",
        name="channel-subscribe-events-v1",
        scope_template="{channel_id}",
        decoder=decoders.decode_subscription,
        description="Subscriptions, resubscriptions and gifted subscriptions",
    ),
    TopicDefinition(
        capability="moderator",
        name="chat_moderator_actions",
        scope_template="{user_id}.{channel_id}",
        decoder=decoders.decode_moderator_action,
        description="Moderation actions (bans, timeouts, chat modes)",
    ),
    TopicDefinition(
        capability="commerce",
        name="channel-commerce-events-v1",
        scope_template="{channel_id}",
        decoder=decoders.decode_commerce,
        description="Purchases made through the channel",
    ),
    TopicDefinition(
        capability="follows",
        name="following",
        scope_template="{channel_id}",
        decoder=decoders.decode_follow,
        description="New followers",
    ),
    TopicDefinition(
        capability="leaderboard-bits",
        name="leaderboard-events-v1",
        scope_template="bits-usage-by-channel-v1-{channel_id}-WEEK",
        decoder=decoders.decode_leaderboard,
        description="Weekly bits leaderboard",
    ),
    TopicDefinition(
        capability="leaderboard-subs",
        name="leaderboard-events-v1",
        scope_template="sub-gift-sent-{channel_id}-WEEK",
        decoder=decoders.decode_leaderboard,
        description="Weekly gifted subscriptions leaderboard",
    ),
    TopicDefinition(
        capability="predictions",
        name="predictions-channel-v1",
        scope_template="{channel_id}",
        decoder=decoders.decode_prediction,
        description="Channel predictions",
    ),
    TopicDefinition(
        capability="raid",
        name="raid",
        scope_template="{channel_id}",
        decoder=decoders.decode_raid,
        description="Outgoing raids",
    ),
    TopicDefinition(
        capability="rewards",
        name="channel-points-channel-v1",
        scope_template="{channel_id}",
        decoder=decoders.decode_reward,
        description="Channel points redemptions and custom reward changes",
    ),
    TopicDefinition(
        capability="video-playback",
        name="video-playback-by-id",
        scope_template="{channel_id}",
        decoder=decoders.decode_video_playback,
        description="Stream up/down, viewer counts and commercials",
    ),
    TopicDefinition(
        capability="whispers",
        name="whispers",
        scope_template="{user_id}",
        decoder=decoders.decode_whisper,
        description="Whispers sent to the user",
    ),
]


def default_registry() -> TopicRegistry:
    """Registry holding the full catalogue."""
    return TopicRegistry(CATALOG)
