"""Logging consumer: one formatted log line per received event."""

from typing import List, Optional
from loguru import logger

from .dispatcher import HandlerRegistration
from .events.models import (
    BitsEvent, CommerceEvent, FollowEvent, LeaderboardEvent, ModeratorActionEvent,
    PredictionEvent, RaidEvent, RewardEvent, SubscriptionEvent, VideoPlaybackEvent,
    WhisperEvent
)
from .exceptions import SubscriptionRejected
from .session import ConnectionState, Session


class LoggingConsumer:
    """Logs every catalogue event at info level."""

    def __init__(self):
        self.registrations: List[HandlerRegistration] = []

    def attach(self, client) -> 'LoggingConsumer':
        """Register handlers and lifecycle listeners on a PubSubClient."""
        handlers = {
            "bits:*": self.on_bits,
            "subscriptions:*": self.on_subscription,
            "moderator:*": self.on_moderator_action,
            "commerce:*": self.on_commerce,
            "follows:*": self.on_follow,
            "leaderboard-*:*": self.on_leaderboard,
            "predictions:*": self.on_prediction,
            "raid:*": self.on_raid,
            "rewards:*": self.on_reward,
            "video-playback:*": self.on_video_playback,
            "whispers:*": self.on_whisper,
        }
        for pattern, handler in handlers.items():
            self.registrations.append(client.on_event(pattern, handler))

        client.on_state_change(self.on_state_change)
        client.on_subscription_failure(self.on_subscription_failure)
        return self

    def detach(self, client) -> None:
        for registration in self.registrations:
            client.remove_handler(registration)
        self.registrations.clear()

    # Lifecycle

    def on_state_change(self, state: ConnectionState, session: Optional[Session]) -> None:
        if state == ConnectionState.CONNECTED:
            logger.info("Connected to pubsub server")
        elif state == ConnectionState.DISCONNECTED:
            logger.info("Connection to pubsub server closed")

    def on_subscription_failure(self, error: SubscriptionRejected) -> None:
        logger.error(f"Failed to listen to {error.topic}: {error.error}")

    # Events

    def on_bits(self, event: BitsEvent) -> None:
        who = "An anonymous cheerer" if event.is_anonymous or not event.username else event.username
        logger.info(f"{who} cheered {event.bits_used} bits (total {event.total_bits_used})")

    def on_subscription(self, event: SubscriptionEvent) -> None:
        name = event.display_name or event.user_name or "An anonymous gifter"
        if event.is_gift:
            logger.info(f"{name} gifted a subscription to {event.recipient_name or 'someone'}")
        elif event.cumulative_months:
            logger.info(f"{name} just subscribed (total of {event.cumulative_months} months)")
        else:
            logger.info(f"{name} just subscribed")

    def on_moderator_action(self, event: ModeratorActionEvent) -> None:
        logger.info(self.describe_moderator_action(event))

    @staticmethod
    def describe_moderator_action(event: ModeratorActionEvent) -> str:
        mod = event.created_by or "A moderator"
        target = event.target or "someone"
        action = event.action.lower()

        if action == "timeout":
            reason = f" ({event.extra})" if event.extra else ""
            duration = f" for {event.detail} seconds" if event.detail else ""
            return f"{mod} timed out {target}{reason}{duration}"
        if action == "untimeout":
            return f"{mod} removed the timeout of {target}"
        if action == "ban":
            reason = f" ({event.detail})" if event.detail else ""
            return f"{mod} banned {target}{reason}"
        if action == "unban":
            return f"{mod} unbanned {target}"
        if action == "delete":
            return f"{mod} deleted the message \"{event.detail or ''}\" from {target}"
        if action == "host":
            return f"{mod} started host to {target}"

        modes = {
            "clear": "cleared the chat",
            "subscribers": "enabled subscriber only mode",
            "subscribersoff": "disabled subscriber only mode",
            "emoteonly": "enabled emote only mode",
            "emoteonlyoff": "disabled emote only mode",
            "r9kbeta": "enabled R9K mode",
            "r9kbetaoff": "disabled R9K mode",
        }
        if action in modes:
            return f"{mod} {modes[action]}"
        return f"{mod} performed {event.action} on {target}"

    def on_commerce(self, event: CommerceEvent) -> None:
        who = event.display_name or event.username or "someone"
        logger.info(f"{event.item_description} => {who}: {event.purchase_message or ''}".rstrip())

    def on_follow(self, event: FollowEvent) -> None:
        logger.info(f"{event.display_name or event.username} is now following")

    def on_leaderboard(self, event: LeaderboardEvent) -> None:
        title = "Bits leader board" if event.domain.startswith("bits") else "Gifted Subs leader board"
        logger.info(title)
        for entry in event.top:
            logger.info(f"{entry.place}) {entry.user_id} ({entry.score})")

    def on_prediction(self, event: PredictionEvent) -> None:
        if event.event_type == "event-created":
            logger.info(f"A new prediction has started: {event.title}")
            return

        outcome = event.winning_outcome
        if event.status in ("ACTIVE", "LOCKED"):
            label = "winning"
        elif event.status == "RESOLVED":
            label = "won"
        else:
            logger.info(f"Prediction: {event.status}, {event.title}")
            return

        if outcome is None:
            logger.info(f"Prediction: {event.status}, {event.title} => {label}: no outcome yet")
        else:
            logger.info(
                f"Prediction: {event.status}, {event.title} => {label}: {outcome.title} "
                f"({outcome.total_points} points by {outcome.total_users} users)"
            )

    def on_raid(self, event: RaidEvent) -> None:
        target = event.target_display_name or event.target_login or event.target_id
        if event.event_type.startswith("raid_go"):
            logger.info(f"Execute raid for {target}")
        elif event.remaining_duration_seconds is not None:
            logger.info(
                f"Started raid to {target} with {event.viewer_count} viewers, "
                f"starts in {event.remaining_duration_seconds} seconds"
            )
        else:
            logger.info(f"Started raid to {target} with {event.viewer_count} viewers")

    def on_reward(self, event: RewardEvent) -> None:
        if event.event_type == "custom-reward-created":
            logger.info(f"Reward {event.reward_title} has been created")
            logger.debug(f"{event.reward_title} ({event.reward_id})")
        elif event.event_type == "custom-reward-updated":
            logger.info(f"Reward {event.reward_title} has been updated")
        elif event.event_type == "custom-reward-deleted":
            logger.info(f"Reward {event.reward_title} has been removed")
        elif event.status == "FULFILLED":
            logger.info(f"Reward from {event.display_name} ({event.reward_title}) has been marked as complete")
        else:
            logger.info(f"{event.display_name} redeemed: {event.reward_title}")

    def on_video_playback(self, event: VideoPlaybackEvent) -> None:
        if event.event_type == "viewcount":
            logger.info(f"Current viewers: {event.viewers}")
        elif event.event_type == "stream-up":
            logger.info("The stream is up")
        elif event.event_type == "stream-down":
            logger.info("The stream is down")
        elif event.event_type == "commercial":
            logger.info(f"A commercial has started for {event.length} seconds")
        else:
            logger.debug(f"Unhandled video playback event {event.event_type}")

    def on_whisper(self, event: WhisperEvent) -> None:
        if event.body is None:
            logger.debug(f"Whisper thread event {event.event_type}")
            return
        sender = event.sender_display_name or "Someone"
        logger.info(f"{sender} sent a whisper: {event.body}")
