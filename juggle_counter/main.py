"""
Juggle counter host service.

Receives per-frame detector output over HTTP or WebSocket, drives the
JuggleTracker and broadcasts count/trajectory state to connected clients.

Usage:
    python -m juggle_counter.main                       # Serve on 0.0.0.0:8000
    python -m juggle_counter.main --replay frames.jsonl # Count juggles in a recording
"""

import argparse
import asyncio
import json
import logging
import sys
import threading
import time
from pathlib import Path
from typing import Optional, Set, List
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, JSONResponse
import uvicorn

from .config import Config, get_config_manager
from .detector import Detection, observe, parse_size
from .tracker import JuggleTracker, TrackerState
from .trajectory import snake_layout
from .session import JuggleSession
from .timing import FrameTimer
from .replay import run_replay

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class JuggleCounterApp:
    """Main application coordinating tracker, session and timing."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()

        self.tracker = JuggleTracker.from_config(self.config)
        self.session = JuggleSession(
            gap_threshold_s=self.config.juggle.gap_threshold_s,
            max_missing_frames=self.config.juggle.max_missing_frames
        )
        self.timer = FrameTimer()

        # One lock covers a whole frame transaction (tick + session + timing)
        self._lock = threading.Lock()
        self._running = True
        self._current_state: Optional[TrackerState] = None

        # WebSocket clients
        self._ws_clients: Set[WebSocket] = set()
        self._ws_lock = asyncio.Lock()

    def start(self):
        """Accept frames again after stop()."""
        with self._lock:
            self._running = True
        logger.info("JuggleCounter started")

    def stop(self):
        """Stop accepting frames and clear all tracking state."""
        with self._lock:
            self._running = False
            self._reset_locked()
        logger.info("JuggleCounter stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def process_frame(
        self,
        detections: List[Detection],
        timestamp_ms: Optional[float] = None,
        video_size=None,
        display_size=None,
        detect_ms: float = 0.0
    ) -> Optional[TrackerState]:
        """
        Process a single frame of detector output.

        Returns:
            Tracker state, or None when the app is stopped
        """
        proc_start = time.perf_counter()
        if timestamp_ms is None:
            timestamp_ms = time.time() * 1000.0

        detector_cfg = self.config.detector
        observation = observe(
            detections,
            category_name=detector_cfg.category_name,
            score_threshold=detector_cfg.score_threshold,
            video_size=video_size,
            display_size=display_size
        )

        with self._lock:
            if not self._running:
                logger.debug("Frame rejected: counter stopped")
                return None
            state = self.tracker.tick(timestamp_ms, observation)
            self.session.record_frame(state, timestamp_ms)
            self._current_state = state
            proc_ms = (time.perf_counter() - proc_start) * 1000.0
            self.timer.record(timestamp_ms, detect_ms, detect_ms + proc_ms)

        return state

    def reset_tracker(self):
        """Reset tracker and session together so a restart begins from zero."""
        with self._lock:
            self._reset_locked()
        logger.info("Tracker and session reset")

    def _reset_locked(self):
        self.tracker.reset()
        self.session.reset()
        self.timer.reset()
        self._current_state = None

    def get_trajectory_message(self, width: float = 300.0, height: float = 100.0) -> dict:
        """Trajectory samples plus snake layout in a width x height frame."""
        with self._lock:
            samples = self.tracker.trajectory
            points = snake_layout(samples, width, height)

        return {
            "samples": [s.to_dict() for s in samples],
            "snake": [
                {
                    "x": round(p.x, 1),
                    "y": round(p.y, 1),
                    "size": p.size,
                    "juggle": p.is_juggle,
                    "calculated": p.is_extrapolated,
                    "label": [p.label.line1, p.label.line2] if p.label else None
                }
                for p in points
            ],
            "width": width,
            "height": height
        }

    def get_state_message(self) -> dict:
        """Build state message for WebSocket."""
        state = self._current_state

        ball_data = None
        if state and state.latest is not None:
            latest = state.latest
            ball_data = {
                "x": round(latest.x, 1),
                "y": round(latest.y, 1),
                "vx": round(latest.velocity_x, 1),
                "vy": round(latest.velocity_y, 1),
                "diameter": round(latest.diameter, 1),
                "calculated": latest.is_extrapolated,
                "timestamp_ms": latest.timestamp_ms
            }

        peak_data = None
        if state and state.peak is not None:
            peak_data = {
                "juggle": state.peak.is_juggle,
                "ratio": state.peak.ratio,
                "debounced": state.peak.debounced
            }

        timing = self.timer.last
        metrics = {
            "ai_ms": round(timing.detect_ms, 1) if timing else 0.0,
            "post_ai_ms": round(timing.post_detect_ms, 2) if timing else 0.0,
            "total_ms": round(timing.total_ms, 2) if timing else 0.0,
            "frame_fps": round(timing.fps, 1) if timing else 0.0,
            "proc_fps": round(self.timer.fps, 1)
        }

        return {
            "type": "state",
            "frame_id": state.frame_id if state else 0,
            "timestamp_ms": time.time() * 1000,
            "phase": state.phase.value if state else "SEARCHING",
            "count": self.tracker.count,
            "count_delta": state.count_delta if state else 0,
            "ball": ball_data,
            "peak": peak_data,
            "session": self.session.get_state_for_websocket(),
            "metrics": metrics,
            "running": self._running
        }

    async def broadcast_state(self):
        """Broadcast state to all WebSocket clients."""
        if not self._ws_clients:
            return

        message_json = json.dumps(self.get_state_message())

        async with self._ws_lock:
            disconnected = set()
            for ws in self._ws_clients:
                try:
                    await ws.send_text(message_json)
                except (WebSocketDisconnect, RuntimeError):
                    disconnected.add(ws)

            self._ws_clients -= disconnected

    async def add_client(self, websocket: WebSocket):
        """Add WebSocket client."""
        async with self._ws_lock:
            self._ws_clients.add(websocket)
            logger.info(f"Client connected. Total: {len(self._ws_clients)}")

    async def remove_client(self, websocket: WebSocket):
        """Remove WebSocket client."""
        async with self._ws_lock:
            self._ws_clients.discard(websocket)
            logger.info(f"Client disconnected. Total: {len(self._ws_clients)}")


def parse_frame_payload(data: dict) -> dict:
    """
    Turn a JSON frame payload into process_frame() keyword arguments.

    Raises:
        KeyError, TypeError, ValueError, AttributeError: malformed payload
    """
    detections = [Detection.from_dict(d) for d in data.get("detections") or []]
    timestamp_ms = data.get("timestamp_ms")
    return {
        "detections": detections,
        "timestamp_ms": float(timestamp_ms) if timestamp_ms is not None else None,
        "video_size": parse_size(data.get("video_size")),
        "display_size": parse_size(data.get("display_size")),
        "detect_ms": float(data.get("detect_ms", 0.0))
    }


# Global app instance
app_instance: Optional[JuggleCounterApp] = None


def get_app_instance() -> JuggleCounterApp:
    """Get global app instance."""
    global app_instance
    if app_instance is None:
        raise RuntimeError("App not initialized")
    return app_instance


# FastAPI setup
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan manager for startup/shutdown."""
    if app_instance:
        app_instance.start()

    yield

    if app_instance:
        app_instance.stop()


app = FastAPI(
    title="Juggle Counter",
    version="1.0.0",
    lifespan=lifespan
)


@app.get("/")
async def root():
    """Serve a minimal landing page."""
    return HTMLResponse(content="<h1>Juggle Counter</h1><p>POST frames to /api/frame or connect to /ws</p>")


@app.post("/api/frame")
async def post_frame(data: dict):
    """
    Process one frame of detector output.

    Expected data:
    {
        "timestamp_ms": 1712345678901.0,   (optional, server clock otherwise)
        "detections": [{"origin_x": .., "origin_y": .., "width": .., "height": ..,
                        "category_name": "..", "score": 0.9}],
        "video_size": [640, 480],          (optional)
        "display_size": [1280, 960],       (optional)
        "detect_ms": 12.5                  (optional)
    }
    """
    try:
        kwargs = parse_frame_payload(data)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        return JSONResponse({"error": f"Invalid frame payload: {e}"}, status_code=400)

    try:
        sim = get_app_instance()
    except RuntimeError as e:
        return JSONResponse({"error": str(e)}, status_code=500)

    state = sim.process_frame(**kwargs)
    if state is None:
        return JSONResponse({"error": "Counter is stopped"}, status_code=409)

    await sim.broadcast_state()
    return JSONResponse(sim.get_state_message())


@app.get("/api/status")
async def get_status():
    """Get current system status."""
    try:
        sim = get_app_instance()
        return JSONResponse({
            "running": sim.is_running,
            "count": sim.tracker.count,
            "state": sim.get_state_message()
        })
    except Exception as e:
        return JSONResponse({"error": str(e)}, status_code=500)


@app.get("/api/trajectory")
async def get_trajectory(width: float = 300.0, height: float = 100.0):
    """Get buffered trajectory and its snake layout."""
    try:
        sim = get_app_instance()
        return JSONResponse(sim.get_trajectory_message(width, height))
    except Exception as e:
        return JSONResponse({"error": str(e)}, status_code=500)


@app.get("/api/config")
async def get_config_endpoint():
    """Get current configuration."""
    try:
        config = get_app_instance().config
    except RuntimeError as e:
        return JSONResponse({"error": str(e)}, status_code=500)
    return JSONResponse({
        "filter": {
            "process_variance": config.filter.process_variance,
            "measurement_variance": config.filter.measurement_variance
        },
        "trajectory": {
            "buffer_capacity": config.trajectory.buffer_capacity
        },
        "juggle": {
            "min_juggle_interval_ms": config.juggle.min_juggle_interval_ms,
            "gap_threshold_s": config.juggle.gap_threshold_s
        },
        "detector": {
            "category_name": config.detector.category_name,
            "score_threshold": config.detector.score_threshold
        }
    })


@app.post("/api/tracker/reset")
async def reset_tracker():
    """Reset count, trajectory and filters."""
    try:
        sim = get_app_instance()
        sim.reset_tracker()
        await sim.broadcast_state()
        return JSONResponse({"success": True, "count": sim.tracker.count})
    except Exception as e:
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)


@app.post("/api/session/reset")
async def reset_session():
    """Start a new session (statistics only, count is kept)."""
    try:
        sim = get_app_instance()
        sim.session.reset()
        return JSONResponse({"success": True, "session": sim.session.get_state_for_websocket()})
    except Exception as e:
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for frame submission and real-time state updates."""
    await websocket.accept()

    sim = get_app_instance()
    await sim.add_client(websocket)

    try:
        while True:
            try:
                data = await asyncio.wait_for(websocket.receive_text(), timeout=30)
            except asyncio.TimeoutError:
                # Send ping to check connection
                await websocket.send_text(json.dumps({"type": "ping"}))
                continue

            try:
                cmd = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_text(json.dumps({"type": "error", "error": "Invalid JSON"}))
                continue
            if not isinstance(cmd, dict):
                await websocket.send_text(json.dumps({"type": "error", "error": "Command must be a JSON object"}))
                continue

            cmd_type = cmd.get("type")
            if cmd_type == "frame":
                try:
                    kwargs = parse_frame_payload(cmd)
                except (KeyError, TypeError, ValueError, AttributeError) as e:
                    await websocket.send_text(json.dumps({"type": "error", "error": str(e)}))
                    continue
                if sim.process_frame(**kwargs) is not None:
                    await sim.broadcast_state()
            elif cmd_type == "reset":
                sim.reset_tracker()
                await sim.broadcast_state()
            elif cmd_type == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))

    except WebSocketDisconnect:
        pass
    finally:
        await sim.remove_client(websocket)


def print_replay_report(path: str, config: Config, fps: float) -> int:
    """Run a recording through the pipeline and print the result."""
    metrics = run_replay(path, config=config, fps=fps)

    print("\n" + "=" * 60)
    print("REPLAY RESULTS")
    print("=" * 60)
    print(f"Recording: {path}")
    print(f"Frames: {metrics.total_frames} "
          f"({metrics.observed_frames} observed, {metrics.extrapolated_frames} extrapolated)")
    print(f"Juggles: {metrics.juggle_count}")
    print(f"Best streak: {metrics.best_streak}, drops: {metrics.drops}")
    print(f"Duration: {metrics.duration_s:.2f}s")
    print("=" * 60)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Juggle Counter")
    parser.add_argument("--host", type=str, default=None, help="Server host")
    parser.add_argument("--port", type=int, default=None, help="Server port")
    parser.add_argument("--config", type=str, default=None, help="Path to config JSON")
    parser.add_argument("--replay", type=str, help="Count juggles in a recorded detection stream and exit")
    parser.add_argument("--fps", type=float, default=30.0, help="Synthetic replay FPS for frames without timestamps")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    config = get_config_manager(Path(args.config) if args.config else None).config

    if args.replay:
        if not Path(args.replay).exists():
            logger.error(f"Recording not found: {args.replay}")
            return 1
        return print_replay_report(args.replay, config, args.fps)

    host = args.host or config.server_host
    port = args.port or config.server_port

    # Create app instance
    global app_instance
    app_instance = JuggleCounterApp(config)

    logger.info(f"Starting server on {host}:{port}")

    # Run server
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info" if not args.debug else "debug"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
