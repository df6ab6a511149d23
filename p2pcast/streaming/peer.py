"""One-shot (non-trickle) WebRTC offer/answer handled by aiortc.

Flask handlers are synchronous, while aiortc peer connections need an event
loop that outlives the request. :class:`PeerSessionManager` owns one asyncio
loop running on a daemon thread; requests submit coroutines to it and wait
for the answer.
"""
import asyncio
import logging
import threading
from typing import Dict, Iterable, Optional

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription

logger = logging.getLogger(__name__)


class PeerSessionManager:
    def __init__(self, stun_servers: Optional[Iterable[str]] = None, gather_timeout: float = 5.0) -> None:
        self.stun_servers = list(stun_servers or [])
        self.gather_timeout = gather_timeout
        self.pcs = set()
        self.tracks: Dict[str, object] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def answer(self, offer: Dict[str, str]) -> Dict[str, str]:
        """Answer ``offer`` (``{"type", "sdp"}``) and return the local description."""
        loop = self._ensure_loop()
        future = asyncio.run_coroutine_threadsafe(self._answer(offer), loop)
        return future.result(timeout=self.gather_timeout * 2)

    def close_all(self) -> None:
        with self._lock:
            loop, self._loop = self._loop, None
        if loop is None:
            return
        future = asyncio.run_coroutine_threadsafe(self._close_all(), loop)
        future.result(timeout=self.gather_timeout)
        loop.call_soon_threadsafe(loop.stop)

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None:
                self._loop = asyncio.new_event_loop()
                self._thread = threading.Thread(
                    target=self._loop.run_forever, name="aiortc-loop", daemon=True
                )
                self._thread.start()
            return self._loop

    def _configuration(self) -> RTCConfiguration:
        if not self.stun_servers:
            return RTCConfiguration()
        return RTCConfiguration(iceServers=[RTCIceServer(urls=self.stun_servers)])

    async def _answer(self, offer: Dict[str, str]) -> Dict[str, str]:
        pc = RTCPeerConnection(configuration=self._configuration())
        self.pcs.add(pc)
        logger.info("Broadcaster peer created (active: %d)", len(self.pcs))

        @pc.on("track")
        def on_track(track):
            logger.info("Stream received from broadcaster: %s track", track.kind)
            self.tracks[track.kind] = track

            @track.on("ended")
            def on_ended():
                logger.info("Broadcaster track ended: %s", track.kind)
                if self.tracks.get(track.kind) is track:
                    del self.tracks[track.kind]

        @pc.on("iceconnectionstatechange")
        async def on_ice_state():
            logger.info("Broadcaster ICE state: %s", pc.iceConnectionState)
            if pc.iceConnectionState in ("failed", "closed"):
                await self._close(pc)

        try:
            await pc.setRemoteDescription(RTCSessionDescription(sdp=offer["sdp"], type=offer["type"]))
            answer = await pc.createAnswer()
            # aiortc gathers every candidate before setLocalDescription returns
            gathering = asyncio.ensure_future(pc.setLocalDescription(answer))
            done, _ = await asyncio.wait({gathering}, timeout=self.gather_timeout)
            if gathering in done:
                gathering.result()
            else:
                logger.warning("ICE gathering not finished after %ss; answering anyway", self.gather_timeout)
            description = pc.localDescription
            if description is None:
                raise TimeoutError("no local description after ICE gathering timeout")
        except Exception:
            await self._close(pc)
            raise

        logger.info("Broadcast stream started")
        return {"type": description.type, "sdp": description.sdp}

    async def _close(self, pc) -> None:
        await pc.close()
        self.pcs.discard(pc)

    async def _close_all(self) -> None:
        coros = [pc.close() for pc in self.pcs]
        if coros:
            await asyncio.gather(*coros)
        self.pcs.clear()
        self.tracks.clear()
