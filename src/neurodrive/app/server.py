from __future__ import annotations

import asyncio
import json
import logging
import os
import random
from collections import deque
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Set

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from ..sim.core.config import SimulationConfig
from ..sim.core.evolution import EvolutionEngine
from ..sim.core.track import Track
from .brains import brain_payload, export_brain, parse_brain, should_save

log = logging.getLogger(__name__)

FRAME_SECONDS = 1.0 / 60.0


@dataclass(frozen=True)
class QueuedSnapshot:
    tick: int
    payload: str


class SimulationController:
    def __init__(self, config: SimulationConfig, track: Track | None = None, broadcast_interval: int = 1):
        self.config = config
        self.engine = EvolutionEngine(config, track if track is not None else Track.corridor(cell_size=config.border_cell_size))
        self.broadcast_interval = max(1, broadcast_interval)
        self.running = False
        self.frame = 0
        self.speed_multiplier = 1.0
        self.clients: Set[WebSocket] = set()
        self._client_last_sent: Dict[WebSocket, int] = {}
        self._snapshot_queue: deque[QueuedSnapshot] = deque()
        self._lock = asyncio.Lock()
        self._queue_lock = asyncio.Lock()
        self._broadcast_task: asyncio.Task | None = None
        self._frame_rng = random.Random()

    @property
    def ticks_per_frame(self) -> int:
        return max(1, int(self.speed_multiplier))

    def frame_ticks(self) -> int:
        """Ticks to run this frame; below 1x whole frames are skipped at random."""

        if self.speed_multiplier < 1.0 and self._frame_rng.random() > self.speed_multiplier:
            return 0
        return self.ticks_per_frame

    async def start(self) -> None:
        if self._broadcast_task is None:
            self._broadcast_task = asyncio.create_task(self._loop())
        self.running = True

    async def stop(self) -> None:
        self.running = False

    async def reset(self) -> None:
        async with self._lock:
            self.engine.reset()
            self.frame = 0
        async with self._queue_lock:
            self._snapshot_queue.clear()
        for client in self._client_last_sent:
            self._client_last_sent[client] = -1
        await self._broadcast_snapshot()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(FRAME_SECONDS)
            if not self.running:
                continue
            ticks = self.frame_ticks()
            if ticks == 0:
                continue
            async with self._lock:
                self.engine.step(ticks)
                self.frame += 1
            if self.frame % self.broadcast_interval == 0:
                await self._broadcast_snapshot()

    async def acknowledge(self, frame: int) -> None:
        async with self._queue_lock:
            while self._snapshot_queue and self._snapshot_queue[0].tick <= frame:
                self._snapshot_queue.popleft()

    def _serialize_snapshot(self) -> QueuedSnapshot:
        snapshot = self.engine.snapshot()
        payload = {
            "type": "snapshot",
            "tick": self.frame,
            "payload": {
                "tick": snapshot.tick,
                "generation": snapshot.generation,
                "stats": asdict(snapshot.stats),
                "cars": snapshot.cars,
                "traffic": snapshot.traffic,
                "best_car_id": snapshot.best_car_id,
                "best_brain": snapshot.best_brain,
                "metadata": asdict(snapshot.metadata),
            },
        }
        return QueuedSnapshot(tick=self.frame, payload=json.dumps(payload))

    async def _send_pending_snapshots(self, client: WebSocket) -> None:
        last_sent = self._client_last_sent.get(client, -1)
        async with self._queue_lock:
            pending = [item for item in self._snapshot_queue if item.tick > last_sent]
        for item in pending:
            await client.send_text(item.payload)
            last_sent = item.tick
        self._client_last_sent[client] = last_sent

    async def _broadcast_snapshot(self) -> None:
        queued = self._serialize_snapshot()
        async with self._queue_lock:
            self._snapshot_queue.append(queued)
        stale: Set[WebSocket] = set()
        for client in self.clients:
            try:
                await self._send_pending_snapshots(client)
            except WebSocketDisconnect:
                stale.add(client)
        for client in stale:
            self.clients.discard(client)
            self._client_last_sent.pop(client, None)

    async def save_best_brain(self, path: Path) -> dict:
        async with self._lock:
            best = self.engine.best_car
            if best is None or best.brain is None:
                return {"saved": False, "reason": "no learning car to save"}
            if not should_save(best.fitness, self.config):
                return {"saved": False, "reason": f"fitness {best.fitness:.1f} below save threshold"}
            try:
                export_brain(path, best.brain, self.engine.generation, best.fitness, self.config)
            except OSError as exc:
                log.warning("Saving brain to %s failed: %s", path, exc)
                return {"saved": False, "reason": str(exc)}
        return {"saved": True, "generation": self.engine.generation, "fitness": best.fitness}

    def best_brain_payload(self) -> dict | None:
        best = self.engine.best_car
        if best is None or best.brain is None:
            return None
        return brain_payload(best.brain, self.engine.generation, best.fitness, self.config)

    async def load_brain(self, data: dict) -> dict:
        try:
            record = parse_brain(data)
        except (KeyError, TypeError, ValueError) as exc:
            log.warning("Rejected uploaded brain: %s", exc)
            return {"loaded": False, "reason": str(exc)}
        async with self._lock:
            try:
                self.engine.seed_from_brain(record.network)
            except ValueError as exc:
                return {"loaded": False, "reason": str(exc)}
        return {"loaded": True, "generation": record.generation, "fitness": record.fitness}


def _config_from_env() -> SimulationConfig:
    config_path = os.environ.get("NEURODRIVE_CONFIG")
    return SimulationConfig.from_yaml(Path(config_path)) if config_path else SimulationConfig()


app = FastAPI(title="Neurodrive Evolution")
controller = SimulationController(_config_from_env())
brain_path = Path(os.environ.get("NEURODRIVE_BRAIN", "best_brain.json"))
static_dir = Path(__file__).parent / "static"
if static_dir.is_dir():
    app.mount("/static", StaticFiles(directory=static_dir), name="static")


@app.on_event("startup")
async def _startup() -> None:
    await controller.start()


@app.get("/")
async def index() -> FileResponse:
    return FileResponse(static_dir / "index.html")


@app.get("/api/status")
async def status() -> JSONResponse:
    snapshot = controller.engine.snapshot()
    return JSONResponse(
        {
            "running": controller.running,
            "tick": snapshot.tick,
            "generation": snapshot.generation,
            "population": len(controller.engine.population),
            "stats": asdict(snapshot.stats),
        }
    )


@app.post("/api/control/start")
async def start_simulation() -> JSONResponse:
    controller.running = True
    return JSONResponse({"running": True})


@app.post("/api/control/stop")
async def stop_simulation() -> JSONResponse:
    controller.running = False
    return JSONResponse({"running": False})


@app.post("/api/control/reset")
async def reset_simulation() -> JSONResponse:
    await controller.reset()
    return JSONResponse({"running": controller.running, "generation": controller.engine.generation})


@app.post("/api/control/speed")
async def set_speed(payload: dict) -> JSONResponse:
    speed = float(payload.get("multiplier", 1.0))
    controller.speed_multiplier = max(0.1, min(100.0, speed))
    return JSONResponse({"multiplier": controller.speed_multiplier, "ticks_per_frame": controller.ticks_per_frame})


@app.post("/api/brain/save")
async def save_brain() -> JSONResponse:
    return JSONResponse(await controller.save_best_brain(brain_path))


@app.get("/api/brain")
async def get_brain() -> JSONResponse:
    payload = controller.best_brain_payload()
    if payload is None:
        return JSONResponse({"error": "no learning car"}, status_code=404)
    return JSONResponse(payload)


@app.post("/api/brain")
async def post_brain(payload: dict) -> JSONResponse:
    result = await controller.load_brain(payload)
    return JSONResponse(result, status_code=200 if result["loaded"] else 400)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    await websocket.accept()
    controller.clients.add(websocket)
    controller._client_last_sent[websocket] = -1
    await controller._send_pending_snapshots(websocket)
    try:
        while True:
            message = await websocket.receive_text()
            try:
                payload = json.loads(message)
            except json.JSONDecodeError:
                continue
            if payload.get("type") == "ack":
                tick = payload.get("tick")
                if isinstance(tick, int):
                    await controller.acknowledge(tick)
    except WebSocketDisconnect:
        controller.clients.discard(websocket)
        controller._client_last_sent.pop(websocket, None)


__all__ = ["app", "controller"]
