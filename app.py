try:
    import eventlet
except ImportError:  # pragma: no cover
    pass
else:
    eventlet.monkey_patch()

import logging
import os

import p2pcast
from p2pcast import create_app

logger = logging.getLogger("p2pcast")

if __name__ == "__main__":
    app = create_app()
    socketio = p2pcast.socketio
    host, port = app.config["HOST"], app.config["PORT"]

    options = {} if socketio.async_mode == "eventlet" else {"allow_unsafe_werkzeug": True}
    cert, key = app.config["CERT_FILE"], app.config["KEY_FILE"]
    if os.path.exists(cert) and os.path.exists(key):
        logger.info("Using HTTPS server")
        if socketio.async_mode == "eventlet":
            options.update(certfile=cert, keyfile=key)
        else:
            options.update(ssl_context=(cert, key))
    else:
        logger.warning("Using HTTP server (getUserMedia requires HTTPS or localhost)")

    logger.info("P2P WebRTC signaling server starting on port %s", port)
    socketio.run(app, host=host, port=port, **options)
