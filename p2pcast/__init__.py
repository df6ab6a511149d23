import atexit
import logging
from functools import partial

from flask import Flask
from flask_socketio import SocketIO

from .config import Config

socketio = None  # set by create_app()


def _bridge_for(app, sio):
    from .streaming import MediaBridge, build_ffmpeg_command, spawn_process

    spawn = spawn_process
    if sio.async_mode == "eventlet":
        from eventlet.green import subprocess as green_subprocess

        spawn = partial(spawn_process, popen=green_subprocess.Popen)

    return MediaBridge(
        command=build_ffmpeg_command(app.config),
        spawn=spawn,
        start_background_task=sio.start_background_task,
        sleep=sio.sleep,
        start_timeout=app.config["BRIDGE_START_TIMEOUT"],
        stop_timeout=app.config["BRIDGE_STOP_TIMEOUT"],
    )


def create_app(config_object=None, bridge=None):
    global socketio
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    sio = SocketIO(
        app,
        cors_allowed_origins="*",
        async_mode=app.config["SOCKETIO_ASYNC_MODE"],
    )
    socketio = sio

    from .services import Coordinator, SocketIOTransport
    from .streaming import PeerSessionManager
    from .routes.status import status_bp
    from .routes.streaming import streaming_bp
    from .sockets import register_socketio_events
    from .errors import register_error_handlers

    coordinator = Coordinator(SocketIOTransport(sio), bridge or _bridge_for(app, sio))
    peers = PeerSessionManager(
        stun_servers=app.config["STUN_SERVERS"],
        gather_timeout=app.config["ICE_GATHER_TIMEOUT"],
    )
    atexit.register(peers.close_all)
    app.extensions["p2pcast"] = {"coordinator": coordinator, "peers": peers}

    app.register_blueprint(status_bp)
    app.register_blueprint(streaming_bp)

    register_socketio_events(sio, coordinator)
    register_error_handlers(app)

    @app.after_request
    def allow_cors(response):
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = (
            "Origin, X-Requested-With, Content-Type, Accept, Authorization"
        )
        return response

    @app.route("/")
    def index():
        return "OK · Signaling: Socket.IO · Status: /status · One-shot offer: POST /broadcast"

    logging.getLogger(__name__).info("SocketIO async_mode=%s", sio.async_mode)
    return app
