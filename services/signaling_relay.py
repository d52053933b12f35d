"""
Signaling relay for the phone camera.

Pairs one `host` (the dashboard browser) and one `phone` per room and forwards
WebRTC negotiation messages (offer / answer / ice-candidate) between them
verbatim. The relay never inspects payloads and never carries media.

The relay is transport-agnostic: a peer is any PeerSocket. The HTTP layer uses
MailboxSocket, whose queued events are streamed to the browser over SSE.
"""

import logging
import queue
import secrets
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import config

logger = logging.getLogger(__name__)

HOST = "host"
PHONE = "phone"
ROLES = (HOST, PHONE)

SIGNAL_TYPES = ("offer", "answer", "ice-candidate", "join", "leave")

# Events pushed to peers
EVENT_PEER_JOINED = "peer-joined"
EVENT_PEER_LEFT = "peer-left"
EVENT_SIGNAL = "signal"


def other_role(role: str) -> str:
    validate_role(role)
    return PHONE if role == HOST else HOST


def validate_role(role: str) -> str:
    if role not in ROLES:
        raise ValueError(f"Invalid role: {role!r} (expected 'host' or 'phone')")
    return role


def validate_signal(message: Dict[str, Any]) -> Dict[str, Any]:
    """Check the envelope of a signaling message; the payload is not inspected."""
    if not isinstance(message, dict):
        raise ValueError("Signal message must be a JSON object")
    if message.get("type") not in SIGNAL_TYPES:
        raise ValueError(f"Invalid signal type: {message.get('type')!r}")
    return message


def generate_room_id() -> str:
    """Random URL-safe room id."""
    return secrets.token_urlsafe(9)


def build_phone_url(room_id: str, base_url: str = None) -> str:
    base = (base_url or config.PHONE_CAMERA_BASE_URL).rstrip("/")
    return f"{base}/phone-camera?room={room_id}"


class PeerSocket(ABC):
    """One connected peer. send() must not block."""

    @abstractmethod
    def send(self, event: str, data: Dict[str, Any]) -> None:
        pass


class MailboxSocket(PeerSocket):
    """Peer whose events are queued until the transport picks them up."""

    def __init__(self):
        self._queue: "queue.Queue[Tuple[str, Dict[str, Any]]]" = queue.Queue()
        self.closed = False

    def send(self, event: str, data: Dict[str, Any]) -> None:
        if not self.closed:
            self._queue.put((event, data))

    def receive(self, timeout: float = None) -> Optional[Tuple[str, Dict[str, Any]]]:
        """Next (event, data), or None on timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self.closed = True


@dataclass
class SignalingRoom:
    room_id: str
    host: Optional[PeerSocket] = None
    phone: Optional[PeerSocket] = None

    def get(self, role: str) -> Optional[PeerSocket]:
        return self.host if role == HOST else self.phone

    def set(self, role: str, socket: Optional[PeerSocket]) -> None:
        if role == HOST:
            self.host = socket
        else:
            self.phone = socket

    def is_empty(self) -> bool:
        return self.host is None and self.phone is None


@dataclass(frozen=True)
class RoomEvent:
    kind: str  # "joined" | "left"
    room_id: str
    role: str


class SignalingRelay:
    """
    Usage:
        relay = SignalingRelay()
        relay.join(room_id, "host", host_socket)
        relay.join(room_id, "phone", phone_socket)
        relay.relay(room_id, "host", {"type": "offer", "roomId": room_id, "from": "host", "payload": sdp})
        relay.leave(room_id, "phone")
    """

    def __init__(self, rooms: Optional[Dict[str, SignalingRoom]] = None):
        self._rooms: Dict[str, SignalingRoom] = rooms if rooms is not None else {}
        self._lock = threading.Lock()
        self._listeners: List[Callable[[RoomEvent], None]] = []

    def subscribe(self, listener: Callable[[RoomEvent], None]) -> Callable[[], None]:
        """Register a room-event listener. Returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return unsubscribe

    def _publish(self, event: RoomEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning("Room event listener failed: %s", e)

    def join(self, room_id: str, role: str, socket: PeerSocket) -> None:
        """
        Put `socket` in the room under `role`, creating the room if needed.

        A previous occupant of the same role is replaced without notice. When
        the opposite role is present, both sides get peer-joined naming the
        other's role.
        """
        validate_role(role)
        other = other_role(role)
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                room = SignalingRoom(room_id=room_id)
                self._rooms[room_id] = room
                logger.info("Signaling room %s created", room_id)
            if room.get(role) is not None and room.get(role) is not socket:
                logger.info("Replacing %s in room %s", role, room_id)
            room.set(role, socket)
            peer = room.get(other)

        if peer is not None:
            peer.send(EVENT_PEER_JOINED, {"role": role})
            socket.send(EVENT_PEER_JOINED, {"role": other})
            logger.info("Both parties in room %s", room_id)
        self._publish(RoomEvent("joined", room_id, role))

    def relay(self, room_id: str, from_role: str, message: Dict[str, Any]) -> bool:
        """
        Forward `message` unchanged to the opposite role.

        Returns False (message dropped) when the room is unknown or the target
        role is empty.
        """
        validate_role(from_role)
        validate_signal(message)
        with self._lock:
            room = self._rooms.get(room_id)
            target = room.get(other_role(from_role)) if room is not None else None
        if target is None:
            logger.debug("Dropped %s from %s in room %s: no peer", message.get("type"), from_role, room_id)
            return False
        target.send(EVENT_SIGNAL, message)
        return True

    def leave(self, room_id: str, role: str, socket: Optional[PeerSocket] = None) -> bool:
        """
        Clear `role` from the room, notify the remaining peer with peer-left and
        delete the room once both roles are empty.

        If `socket` is given and no longer occupies the role (it was replaced by
        a later join), nothing happens. Returns True if a role was cleared.
        """
        validate_role(role)
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return False
            current = room.get(role)
            if current is None or (socket is not None and current is not socket):
                return False
            room.set(role, None)
            peer = room.get(other_role(role))
            if room.is_empty():
                del self._rooms[room_id]
                logger.info("Signaling room %s deleted", room_id)

        if peer is not None:
            peer.send(EVENT_PEER_LEFT, {"role": role})
        logger.info("%s left room %s", role, room_id)
        self._publish(RoomEvent("left", room_id, role))
        return True

    def has_room(self, room_id: str) -> bool:
        with self._lock:
            return room_id in self._rooms

    def room_count(self) -> int:
        with self._lock:
            return len(self._rooms)

    def is_attached(self, room_id: str, role: str, socket: PeerSocket) -> bool:
        """True while `socket` is the current occupant of `role`."""
        with self._lock:
            room = self._rooms.get(room_id)
            return room is not None and room.get(role) is socket

    def occupants(self, room_id: str) -> Dict[str, bool]:
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return {HOST: False, PHONE: False}
            return {HOST: room.host is not None, PHONE: room.phone is not None}
