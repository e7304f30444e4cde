"""Enumerations shared by the gateway and the threading core."""

from .enums import ChannelAction, ChannelRole, ViewState

__all__ = [
    "ChannelAction",
    "ChannelRole",
    "ViewState",
]
