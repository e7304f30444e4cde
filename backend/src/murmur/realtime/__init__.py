"""Realtime delivery: push sources, the pub/sub transport and the live merger."""

from .merger import LiveUpdateMerger
from .push import (
    BrokerPushSource,
    ChannelMembership,
    LocalPushSource,
    PushSource,
    build_push_source,
    channel_topic,
)
from .transport import BrokerConfig, PubSubTransport, Subscription, TransportUnavailableError

__all__ = [
    "BrokerConfig",
    "BrokerPushSource",
    "ChannelMembership",
    "LiveUpdateMerger",
    "LocalPushSource",
    "PubSubTransport",
    "PushSource",
    "Subscription",
    "TransportUnavailableError",
    "build_push_source",
    "channel_topic",
]
