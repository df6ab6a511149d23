import os


def _default_async_mode():
    try:
        import eventlet  # noqa: F401
        return "eventlet"
    except Exception:  # pragma: no cover
        return "threading"


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "change-me")
    HOST = os.environ.get("HOST", "0.0.0.0")
    PORT = int(os.environ.get("PORT", 5000))
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    SOCKETIO_ASYNC_MODE = os.environ.get("SOCKETIO_ASYNC_MODE") or _default_async_mode()

    # RTMP re-encoding (ffmpeg reads the broadcaster's MediaRecorder output on stdin)
    FFMPEG_BIN = os.environ.get("FFMPEG_BIN", "ffmpeg")
    RTMP_URL = os.environ.get("RTMP_URL", "rtmp://localhost:1935/live/stream")
    INPUT_FORMAT = os.environ.get("INPUT_FORMAT", "webm")
    VIDEO_CODEC = os.environ.get("VIDEO_CODEC", "libx264")
    AUDIO_CODEC = os.environ.get("AUDIO_CODEC", "aac")
    VIDEO_BITRATE = os.environ.get("VIDEO_BITRATE", "1000k")
    AUDIO_BITRATE = os.environ.get("AUDIO_BITRATE", "128k")
    BRIDGE_START_TIMEOUT = float(os.environ.get("BRIDGE_START_TIMEOUT", 10))
    BRIDGE_STOP_TIMEOUT = float(os.environ.get("BRIDGE_STOP_TIMEOUT", 5))

    # one-shot offer/answer endpoint
    ICE_GATHER_TIMEOUT = float(os.environ.get("ICE_GATHER_TIMEOUT", 5))
    STUN_SERVERS = [
        s.strip()
        for s in os.environ.get("STUN_SERVERS", "stun:stun.l.google.com:19302").split(",")
        if s.strip()
    ]

    CERT_FILE = os.environ.get("CERT_FILE", "cert.pem")
    KEY_FILE = os.environ.get("KEY_FILE", "key.pem")


class TestingConfig(Config):
    TESTING = True
    SOCKETIO_ASYNC_MODE = "threading"
    LOG_LEVEL = "DEBUG"
    BRIDGE_START_TIMEOUT = 1.0
    BRIDGE_STOP_TIMEOUT = 1.0
    ICE_GATHER_TIMEOUT = 1.0
