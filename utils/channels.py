"""In-process publish/subscribe hub for per-actor and per-department channels."""
from __future__ import annotations

import itertools
import queue
import threading
from collections import OrderedDict, defaultdict, deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Sequence

from flask import current_app

Subscriber = Callable[[str, str, Dict[str, Any]], None]


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


def department_channel(department: str) -> str:
    return f"dept:{department}"


class ChannelStream:
    """A registered stream connection: replayed backlog first, then live messages."""

    def __init__(self, hub: "ChannelHub", channels: Sequence[str]) -> None:
        self.channels = list(channels)
        self._hub = hub
        self._queue: "queue.Queue[Dict[str, Any]]" = queue.Queue()
        self._closed = False

    def put(self, message: Dict[str, Any]) -> None:
        self._queue.put(message)

    def messages(self, heartbeat: float) -> Iterator[Optional[Dict[str, Any]]]:
        """Yield messages as they arrive; ``None`` marks an idle heartbeat interval."""
        while not self._closed:
            try:
                yield self._queue.get(timeout=heartbeat)
            except queue.Empty:
                yield None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._hub._drop_stream(self)


class ChannelHub:
    """Fan messages out to subscribers and keep a short replay buffer per channel.

    Replay buffers are kept for the most recently used ``max_channels`` channels
    only; older idle channels are evicted.
    """

    def __init__(self, history_size: int = 100, max_channels: int = 1000, logger=None) -> None:
        self._lock = threading.Lock()
        self._sequence = itertools.count(1)
        self._subscribers: Dict[str, List[Subscriber]] = defaultdict(list)
        self._streams: Dict[str, List[ChannelStream]] = defaultdict(list)
        self._history: "OrderedDict[str, Deque[Dict[str, Any]]]" = OrderedDict()
        self._history_size = history_size
        self._max_channels = max_channels
        self._logger = logger

    def subscribe(self, channel: str, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers[channel].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers.get(channel, []):
                    self._subscribers[channel].remove(callback)
                    if not self._subscribers[channel]:
                        del self._subscribers[channel]

        return unsubscribe

    def open_stream(self, channels: Sequence[str], after: Optional[int] = None) -> ChannelStream:
        """Register a stream on ``channels``, queueing buffered messages newer than ``after``."""
        stream = ChannelStream(self, channels)
        with self._lock:
            if after is not None:
                backlog = [
                    message
                    for channel in stream.channels
                    for message in self._history.get(channel, ())
                    if message["id"] > after
                ]
                for message in sorted(backlog, key=lambda item: item["id"]):
                    stream.put(message)
            for channel in stream.channels:
                self._streams[channel].append(stream)
        return stream

    def _drop_stream(self, stream: ChannelStream) -> None:
        with self._lock:
            for channel in stream.channels:
                listeners = self._streams.get(channel, [])
                if stream in listeners:
                    listeners.remove(stream)
                if not listeners:
                    self._streams.pop(channel, None)

    def _remember(self, channel: str, message: Dict[str, Any]) -> None:
        buffer = self._history.get(channel)
        if buffer is None:
            buffer = self._history[channel] = deque(maxlen=self._history_size)
        else:
            self._history.move_to_end(channel)
        buffer.append(message)
        while len(self._history) > self._max_channels:
            self._history.popitem(last=False)

    def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> int:
        with self._lock:
            message = {
                "id": next(self._sequence),
                "channel": channel,
                "event": event,
                "payload": payload,
                "published_at": datetime.utcnow().isoformat(),
            }
            self._remember(channel, message)
            subscribers = list(self._subscribers.get(channel, []))
            streams = list(self._streams.get(channel, []))

        for stream in streams:
            stream.put(message)

        delivered = 0
        for callback in subscribers:
            try:
                callback(channel, event, payload)
                delivered += 1
            except Exception:
                # One broken listener must not starve the others.
                if self._logger is not None:
                    self._logger.warning("Channel subscriber failed", exc_info=True, extra={"channel": channel, "event": event})
        return delivered + len(streams)

    def history(self, channel: str) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._history.get(channel, []))

    def channel_count(self) -> int:
        with self._lock:
            return len(self._history)


def init_channels(app) -> ChannelHub:
    hub = ChannelHub(
        history_size=int(app.config.get("CHANNEL_HISTORY_SIZE", 100)),
        max_channels=int(app.config.get("CHANNEL_HISTORY_CHANNELS", 1000)),
        logger=app.logger,
    )
    app.extensions["channel_hub"] = hub
    return hub


def get_hub() -> ChannelHub:
    return current_app.extensions["channel_hub"]
