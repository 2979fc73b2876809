"""WebSocket chart streaming for browser panels."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from audio_spectrum_analyzer.chart import ChartBackend
from audio_spectrum_analyzer.protocol import (
    EngineErrorFrame,
    EngineFrame,
    EngineStatusFrame,
    PanelLayout,
    Trace,
    engine_error_to_wire,
    engine_status_to_wire,
    make_panel_message,
)
from audio_spectrum_analyzer.system import SpectrumSystem

logger = logging.getLogger(__name__)

router = APIRouter()

CLIENT_QUEUE_SIZE = 64


@dataclass(frozen=True)
class PanelOp:
    """One chart backend call, rendered to wire format per client session."""

    message_type: str
    panel_id: str
    traces: Optional[Sequence[Trace]] = None
    layout: Optional[PanelLayout] = None
    data: Optional[Mapping[str, Any]] = None
    visible: Optional[bool] = None


OpCallback = Callable[[PanelOp], None]
HubItem = Union[PanelOp, EngineFrame]


class StreamChartBackend(ChartBackend):
    """
    Chart backend that forwards panel operations to subscribers.

    The latest structural state of each panel is kept so late joiners can be
    brought up to date before they receive incremental updates.
    """

    def __init__(self) -> None:
        super().__init__()
        self._subscribers: List[OpCallback] = []
        self._structure: Dict[str, PanelOp] = {}
        self._layouts: Dict[str, PanelOp] = {}
        self._visibility: Dict[str, PanelOp] = {}

    def subscribe(self, callback: OpCallback) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: OpCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def snapshot(self) -> List[PanelOp]:
        """Ops that rebuild the current panels on a fresh client."""

        ops: List[PanelOp] = list(self._structure.values())
        ops.extend(op for pid, op in self._layouts.items() if pid in self._structure)
        ops.extend(self._visibility.values())
        return ops

    def _publish(self, op: PanelOp) -> None:
        for callback in list(self._subscribers):
            callback(op)

    def create_panel(self, panel_id: str, traces: Sequence[Trace], layout: PanelLayout) -> None:
        op = PanelOp("create_panel", panel_id, traces=list(traces), layout=layout)
        self._structure[panel_id] = op
        self._layouts.pop(panel_id, None)
        self._publish(op)

    def update_panel_data(self, panel_id: str, data: Mapping[str, Any]) -> None:
        self._publish(PanelOp("update_panel", panel_id, data=dict(data)))

    def replace_panel_traces(self, panel_id: str, traces: Sequence[Trace], layout: PanelLayout) -> None:
        op = PanelOp("replace_traces", panel_id, traces=list(traces), layout=layout)
        # Late joiners get the replaced set as their create message.
        self._structure[panel_id] = PanelOp("create_panel", panel_id, traces=list(traces), layout=layout)
        self._layouts.pop(panel_id, None)
        self._publish(op)

    def relayout(self, panel_id: str, layout: PanelLayout) -> None:
        op = PanelOp("relayout", panel_id, layout=layout)
        self._layouts[panel_id] = op
        self._publish(op)

    def set_visible(self, panel_id: str, visible: bool) -> None:
        op = PanelOp("visibility", panel_id, visible=bool(visible))
        self._visibility[panel_id] = op
        self._publish(op)

    def resize(self, panel_id: str) -> None:
        # Browser panels re-fit on their own when visibility changes.
        return None

    def destroy_panel(self, panel_id: str) -> None:
        self._structure.pop(panel_id, None)
        self._layouts.pop(panel_id, None)
        self._publish(PanelOp("destroy_panel", panel_id))


class AsyncioTicker:
    """Periodic callback on the running event loop; QTimer's server twin."""

    def __init__(self, callback: Callable[[], object], interval_s: float):
        self._callback = callback
        self.interval_s = float(interval_s)
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.active:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        while True:
            try:
                self._callback()
            except Exception:
                logger.exception("ticker callback failed")
            await asyncio.sleep(self.interval_s)


@dataclass
class _ClientSession:
    websocket: WebSocket
    queue: asyncio.Queue[HubItem]
    session_id: uuid.UUID
    seq: int = 0

    def next_seq(self) -> int:
        self.seq += 1
        return self.seq


class _StreamHub:
    """Fan out panel ops and engine frames to multiple WebSocket clients."""

    def __init__(self, system: SpectrumSystem, loop: asyncio.AbstractEventLoop) -> None:
        self._system = system
        self._loop = loop
        self._clients: list[_ClientSession] = []
        self.frames_dropped = 0
        # Subscribe once so every op and frame is broadcast to all clients.
        self._system.subscribe(self.publish)
        if isinstance(system.backend, StreamChartBackend):
            system.backend.subscribe(self.publish)

    def register(self, session: _ClientSession) -> None:
        self._clients.append(session)

    def unregister(self, session: _ClientSession) -> None:
        if session in self._clients:
            self._clients.remove(session)

    def publish(self, item: HubItem) -> None:
        # Routes and the ticker share the loop, but stay safe for other threads.
        self._loop.call_soon_threadsafe(self._enqueue, item)

    def _enqueue(self, item: HubItem) -> None:
        for session in list(self._clients):
            try:
                session.queue.put_nowait(item)
            except asyncio.QueueFull:
                # Drop for slow clients rather than blocking the others.
                self.frames_dropped += 1
                logger.debug("dropped %s for session %s", type(item).__name__, session.session_id)


def _get_hub(websocket: WebSocket) -> _StreamHub:
    app = websocket.app
    hub = getattr(app.state, "ws_hub", None)
    if hub is None:
        hub = _StreamHub(app.state.system, asyncio.get_running_loop())
        app.state.ws_hub = hub
    return hub


def item_to_wire(item: HubItem, *, seq: int, session_id: uuid.UUID) -> Optional[dict[str, Any]]:
    if isinstance(item, PanelOp):
        return make_panel_message(
            message_type=item.message_type,
            seq=seq,
            session_id=session_id,
            panel_id=item.panel_id,
            traces=item.traces,
            layout=item.layout,
            data=item.data,
            visible=item.visible,
        )
    if isinstance(item, EngineStatusFrame):
        return engine_status_to_wire(item, seq=seq, session_id=session_id)
    if isinstance(item, EngineErrorFrame):
        return engine_error_to_wire(item, seq=seq, session_id=session_id)
    return None


async def _send_item(session: _ClientSession, item: HubItem) -> None:
    payload = item_to_wire(item, seq=session.next_seq(), session_id=session.session_id)
    if payload is not None:
        await session.websocket.send_json(payload)


async def _send_loop(session: _ClientSession) -> None:
    while True:
        item = await session.queue.get()
        await _send_item(session, item)


async def _receive_loop(session: _ClientSession, backend: ChartBackend) -> None:
    # Clients report user axis drags as {"type": "axis_changed", ...}.
    while True:
        message = await session.websocket.receive_json()
        if not isinstance(message, dict) or message.get("type") != "axis_changed":
            continue
        try:
            low, high = (float(value) for value in message["range"])
            backend.notify_axis_changed(str(message["panel_id"]), str(message["axis"]), low, high)
        except (KeyError, TypeError, ValueError) as exc:
            logger.debug("ignoring malformed axis message: %s", exc)


@router.websocket("/ws/panels")
async def panels(websocket: WebSocket) -> None:
    await websocket.accept()
    session = _ClientSession(
        websocket=websocket,
        queue=asyncio.Queue(maxsize=CLIENT_QUEUE_SIZE),
        session_id=uuid.uuid4(),
    )
    system: SpectrumSystem = websocket.app.state.system

    # Join the broadcast first; ops published while the snapshot goes out queue up behind it.
    hub = _get_hub(websocket)
    hub.register(session)
    await _send_item(session, system.status())
    if isinstance(system.backend, StreamChartBackend):
        for op in system.backend.snapshot():
            await _send_item(session, op)

    sender = asyncio.ensure_future(_send_loop(session))
    receiver = asyncio.ensure_future(_receive_loop(session, system.backend))
    try:
        done, _pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                raise exc
    finally:
        sender.cancel()
        receiver.cancel()
        hub.unregister(session)
