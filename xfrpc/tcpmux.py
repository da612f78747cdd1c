"""TCP stream multiplexing: frame headers, stream windows and ring buffers."""

from __future__ import annotations

import enum
import logging
import struct
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)

MAX_STREAM_WINDOW_SIZE = 256 * 1024
RBUF_SIZE = 32 * 1024
WBUF_SIZE = 32 * 1024
PROTO_VERSION = 0
HEADER_SIZE = 12

_HEADER = struct.Struct(">BBHII")
_U32 = 0xFFFFFFFF


class GoAwayType(enum.IntEnum):
    NORMAL = 0
    PROTO_ERR = 1
    INTERNAL_ERR = 2


class TcpMuxType(enum.IntEnum):
    DATA = 0
    WINDOW_UPDATE = 1
    PING = 2
    GO_AWAY = 3


class TcpMuxFlag(enum.IntFlag):
    ZERO = 0
    SYN = 1
    ACK = 1 << 1
    FIN = 1 << 2
    RST = 1 << 3


class StreamState(enum.IntEnum):
    INIT = 0
    SYN_SEND = 1
    SYN_RECEIVED = 2
    ESTABLISHED = 3
    LOCAL_CLOSE = 4
    REMOTE_CLOSE = 5
    CLOSED = 6
    RESET = 7


@dataclass(frozen=True)
class TcpMuxHeader:
    """A decoded frame header; all fields in host order."""

    version: int
    type: int
    flags: int
    stream_id: int
    length: int


def encode_header(type: int, flags: int, stream_id: int, length: int) -> bytes:
    """Pack a frame header into its 12-byte wire form."""
    return _HEADER.pack(PROTO_VERSION, int(type), int(flags), stream_id & _U32, length & _U32)


def decode_header(data: bytes) -> TcpMuxHeader:
    """Unpack the first 12 bytes of ``data`` into a header."""
    if len(data) < HEADER_SIZE:
        raise ValueError(f"tcp mux header needs {HEADER_SIZE} bytes, got {len(data)}")
    return TcpMuxHeader(*_HEADER.unpack_from(data))


def validate_tcp_mux_protocol(header: TcpMuxHeader) -> bool:
    """Return True if the header carries the known version and a known type."""
    return header.version == PROTO_VERSION and header.type <= TcpMuxType.GO_AWAY


class RingBuffer:
    """A bounded FIFO byte buffer."""

    def __init__(self, capacity: int = RBUF_SIZE) -> None:
        self.capacity = capacity
        self._data = bytearray()

    def __len__(self) -> int:
        return len(self._data)

    def _free(self) -> int:
        return self.capacity - len(self._data)

    def append(self, data: bytes) -> int:
        """Store all of ``data``; raise BufferError if it does not fit."""
        if len(data) > self._free():
            raise BufferError(f"ring buffer has room for {self._free()} bytes, not {len(data)}")
        self._data.extend(data)
        return len(data)

    def pop(self, length: int) -> bytes:
        """Remove and return the oldest ``length`` bytes."""
        if length > len(self._data):
            raise BufferError(f"ring buffer holds {len(self._data)} bytes, not {length}")
        out = bytes(self._data[:length])
        del self._data[:length]
        return out

    def read_from(self, data: bytes) -> int:
        """Store as much of ``data`` as fits and return how many bytes were taken."""
        free = self._free()
        if free == 0:
            logger.error("ring buffer is full")
            return 0
        count = len(data)
        if count > free:
            logger.info("prepare read data [%d] out size ring capacity [%d]", count, free)
            count = free
        self._data.extend(data[:count])
        return count


@dataclass(eq=False)
class TmuxStream:
    """One multiplexed stream with its flow-control windows and buffers."""

    id: int
    state: StreamState = StreamState.INIT
    recv_window: int = MAX_STREAM_WINDOW_SIZE
    send_window: int = MAX_STREAM_WINDOW_SIZE
    tx_ring: RingBuffer = field(default_factory=lambda: RingBuffer(WBUF_SIZE))
    rx_ring: RingBuffer = field(default_factory=lambda: RingBuffer(RBUF_SIZE))


class MuxSession:
    """Stream registry and frame logic of one multiplexed control connection.

    ``output`` receives every frame header this session emits. ``on_close`` is
    called with a stream id when a stream is torn down, ``on_writable`` with a
    stream whose empty send window has just been reopened.
    """

    def __init__(
        self,
        output: Callable[[bytes], object],
        tcp_mux: bool = True,
        on_close: Optional[Callable[[int], object]] = None,
        on_writable: Optional[Callable[[TmuxStream], object]] = None,
    ) -> None:
        self._output = output
        self.tcp_mux = tcp_mux
        self._on_close = on_close
        self._on_writable = on_writable
        self._next_id = 1
        self._streams: dict[int, TmuxStream] = {}
        self.remote_go_away = False
        self.local_go_away = False
        self.current_stream: Optional[TmuxStream] = None

    # session ids and registry

    def next_session_id(self) -> int:
        """Return the next client-side (odd) stream id."""
        sid = self._next_id
        self._next_id += 2
        return sid

    def reset_session_id(self) -> None:
        self._next_id = 1

    def add_stream(self, stream: TmuxStream) -> None:
        self._streams[stream.id] = stream

    def del_stream(self, stream_id: int) -> None:
        self._streams.pop(stream_id, None)

    def clear_streams(self) -> None:
        self._streams.clear()

    def get_stream(self, stream_id: int) -> Optional[TmuxStream]:
        return self._streams.get(stream_id)

    def open_stream(self, stream_id: int, state: StreamState = StreamState.INIT) -> TmuxStream:
        """Create a stream with full windows and register it."""
        stream = TmuxStream(stream_id, StreamState(state))
        self.add_stream(stream)
        return stream

    # frame output

    def _write_header(self, type: TcpMuxType, flags: int, stream_id: int, length: int) -> None:
        self._output(encode_header(type, flags, stream_id, length))

    def _send_win_update(self, flags: int, stream_id: int, delta: int) -> None:
        self._write_header(TcpMuxType.WINDOW_UPDATE, flags, stream_id, delta)

    def send_win_update_syn(self, stream_id: int) -> None:
        if self.tcp_mux:
            self._send_win_update(TcpMuxFlag.SYN, stream_id, 0)

    def send_win_update_ack(self, stream_id: int, delta: int) -> None:
        if self.tcp_mux:
            self._send_win_update(TcpMuxFlag.ZERO, stream_id, 0)

    def send_win_update_fin(self, stream_id: int) -> None:
        if self.tcp_mux:
            self._send_win_update(TcpMuxFlag.FIN, stream_id, 0)

    def send_win_update_rst(self, stream_id: int) -> None:
        if self.tcp_mux:
            self._send_win_update(TcpMuxFlag.RST, stream_id, 0)

    def send_data(self, flags: int, stream_id: int, length: int) -> None:
        if self.tcp_mux:
            self._write_header(TcpMuxType.DATA, flags, stream_id, length)

    def send_ping(self, ping_id: int) -> None:
        if self.tcp_mux:
            self._write_header(TcpMuxType.PING, TcpMuxFlag.SYN, 0, ping_id)

    def _send_go_away(self, reason: GoAwayType) -> None:
        if self.tcp_mux:
            self._write_header(TcpMuxType.GO_AWAY, TcpMuxFlag.ZERO, 0, reason)

    # stream state machine

    def _close_stream(self, stream: TmuxStream) -> None:
        logger.debug("free stream %d", stream.id)
        self.del_stream(stream.id)
        if self._on_close is not None:
            self._on_close(stream.id)

    def _process_flags(self, flags: int, stream: TmuxStream) -> bool:
        close = False
        if flags & TcpMuxFlag.ACK:
            if stream.state == StreamState.SYN_SEND:
                stream.state = StreamState.ESTABLISHED
        elif flags & TcpMuxFlag.FIN:
            if stream.state in (StreamState.SYN_SEND, StreamState.SYN_RECEIVED, StreamState.ESTABLISHED):
                stream.state = StreamState.REMOTE_CLOSE
            elif stream.state == StreamState.LOCAL_CLOSE:
                stream.state = StreamState.CLOSED
                close = True
            else:
                logger.error("unexpected FIN flag in state %d", stream.state)
                return False
        elif flags & TcpMuxFlag.RST:
            stream.state = StreamState.RESET
            close = True
        if close:
            self._close_stream(stream)
        return True

    @staticmethod
    def _get_send_flags(stream: TmuxStream) -> int:
        if stream.state == StreamState.INIT:
            stream.state = StreamState.SYN_SEND
            return TcpMuxFlag.SYN
        if stream.state == StreamState.SYN_RECEIVED:
            stream.state = StreamState.ESTABLISHED
            return TcpMuxFlag.ACK
        return TcpMuxFlag.ZERO

    def send_window_update(self, stream: TmuxStream, length: int) -> None:
        """Grow the peer's view of our receive window once enough has drained."""
        limit = MAX_STREAM_WINDOW_SIZE
        delta = ((limit - length) - stream.recv_window) & _U32
        flags = self._get_send_flags(stream)
        if delta < limit // 2 and flags == 0:
            return
        stream.recv_window = (stream.recv_window + delta) & _U32
        self._send_win_update(flags, stream.id, delta)

    # incoming frames

    def handle_ping(self, header: TcpMuxHeader) -> None:
        if header.flags & TcpMuxFlag.SYN and self.tcp_mux:
            self._write_header(TcpMuxType.PING, TcpMuxFlag.ACK, 0, header.length)

    def handle_go_away(self, header: TcpMuxHeader) -> None:
        code = header.length
        if code == GoAwayType.NORMAL:
            self.remote_go_away = True
        elif code == GoAwayType.PROTO_ERR:
            logger.error("receive protocol error go away")
        elif code == GoAwayType.INTERNAL_ERR:
            logger.error("receive internal error go away")
        else:
            logger.error("receive unexpected go away")

    def _incr_send_window(self, header: TcpMuxHeader, stream: TmuxStream) -> bool:
        if not self._process_flags(header.flags, stream):
            return False
        if self.get_stream(stream.id) is None:
            return True
        reopened = stream.send_window == 0
        stream.send_window = (stream.send_window + header.length) & _U32
        if reopened and self._on_writable is not None:
            self._on_writable(stream)
        return True

    def _process_data(
        self,
        stream: TmuxStream,
        length: int,
        flags: int,
        handler: Callable[[bytes], Optional[int]],
    ) -> bool:
        if not self._process_flags(flags, stream):
            return False
        if self.get_stream(stream.id) is None:
            return True
        if length > stream.recv_window:
            logger.error("receive window exceed (remain %d, recv %d)", stream.recv_window, length)
            return False
        stream.recv_window -= length
        data = stream.rx_ring.pop(length)
        consumed = handler(data)
        nret = len(data) if consumed is None else consumed
        if nret != length:
            logger.info("send data to local proxy not equal, nret %d, length %d", nret, length)
        self.send_window_update(stream, nret)
        return True

    def handle_stream(self, header: TcpMuxHeader, handler: Callable[[bytes], Optional[int]]) -> int:
        """Handle a DATA or WINDOW_UPDATE frame; return the data length consumed.

        ``handler`` gets the frame's payload taken from the stream's receive
        buffer and may return how many bytes it forwarded.
        """
        stream_id = header.stream_id
        flags = header.flags
        if flags & TcpMuxFlag.SYN:
            logger.info("unexpected incoming stream %d", stream_id)
            if self.local_go_away:
                self.send_win_update_rst(stream_id)
                return 0
        stream = self.get_stream(stream_id)
        if stream is None:
            return 0
        if header.type == TcpMuxType.WINDOW_UPDATE:
            if not self._incr_send_window(header, stream):
                self._send_go_away(GoAwayType.PROTO_ERR)
            return 0
        if stream.state != StreamState.ESTABLISHED:
            return 0
        if not self._process_data(stream, header.length, flags, handler):
            self._send_go_away(GoAwayType.PROTO_ERR)
            return 0
        return header.length

    # stream I/O

    def stream_read(self, stream: TmuxStream, data: bytes) -> int:
        """Buffer incoming payload for ``stream``; return how many bytes fit."""
        if stream.state != StreamState.ESTABLISHED:
            logger.warning(
                "stream %d state is %d : not ESTABLISHED, data len %d", stream.id, stream.state, len(data)
            )
        return stream.rx_ring.read_from(data)

    def stream_write(self, stream: TmuxStream, data: bytes, sink: Callable[[bytes], object]) -> int:
        """Send what the send window allows to ``sink``, buffering the rest.

        Returns the number of payload bytes announced in the DATA frame.
        """
        if stream.state in (StreamState.LOCAL_CLOSE, StreamState.CLOSED, StreamState.RESET):
            logger.info("stream %d state is closed", stream.id)
            return 0
        tx = stream.tx_ring
        if stream.send_window == 0:
            logger.info("stream %d send_window is zero, length %d", stream.id, len(data))
            tx.append(data)
            return 0
        flags = self._get_send_flags(stream)
        window = stream.send_window
        if window < len(tx):
            sent = window
            self.send_data(flags, stream.id, sent)
            sink(tx.pop(sent))
            tx.append(data)
        elif window < len(tx) + len(data):
            sent = window
            self.send_data(flags, stream.id, sent)
            pending = tx.pop(len(tx))
            cut = sent - len(pending)
            sink(pending + bytes(data[:cut]))
            tx.append(data[cut:])
        else:
            sent = len(tx) + len(data)
            self.send_data(flags, stream.id, sent)
            sink(tx.pop(len(tx)) + bytes(data))
        stream.send_window -= sent
        return sent

    def stream_close(self, stream: TmuxStream) -> bool:
        """Half-close or finish closing ``stream``.

        Returns True while the peer still has to close its side.
        """
        if stream.state in (StreamState.SYN_SEND, StreamState.SYN_RECEIVED, StreamState.ESTABLISHED):
            stream.state = StreamState.LOCAL_CLOSE
            finished = False
        elif stream.state in (StreamState.LOCAL_CLOSE, StreamState.REMOTE_CLOSE):
            stream.state = StreamState.CLOSED
            finished = True
        else:
            return False
        flags = self._get_send_flags(stream) | TcpMuxFlag.FIN
        self._send_win_update(flags, stream.id, 0)
        if not finished:
            return True
        logger.debug("del proxy client %d", stream.id)
        self._close_stream(stream)
        return False