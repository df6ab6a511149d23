"""Media side of the server: the ffmpeg RTMP bridge and aiortc peers."""

from .bridge import BridgeState, MediaBridge, build_ffmpeg_command, spawn_process
from .peer import PeerSessionManager

__all__ = [
    "BridgeState",
    "MediaBridge",
    "PeerSessionManager",
    "build_ffmpeg_command",
    "spawn_process",
]
