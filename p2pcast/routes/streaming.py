"""HTTP endpoint for one-shot (non-trickle) WebRTC negotiation."""
from flask import Blueprint, current_app, jsonify, request

from ..errors import APIError

streaming_bp = Blueprint("streaming", __name__)


def _parse_offer(sdp):
    if not sdp:
        raise APIError("SDP is required", 400)
    if isinstance(sdp, str):
        return {"type": "offer", "sdp": sdp}
    if isinstance(sdp, dict) and isinstance(sdp.get("sdp"), str) and sdp["sdp"]:
        return {"type": sdp.get("type") or "offer", "sdp": sdp["sdp"]}
    raise APIError("'sdp' must be a session description", 400)


@streaming_bp.post("/broadcast")
def broadcast():
    data = request.get_json(silent=True) or {}
    offer = _parse_offer(data.get("sdp"))
    peers = current_app.extensions["p2pcast"]["peers"]
    return jsonify({"sdp": peers.answer(offer)})
