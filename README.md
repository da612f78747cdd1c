# xfrpc

Building blocks for the client side of an frp-style reverse proxy, for use
from Python code.

## Modules

- `xfrpc.tcpmux` – the stream multiplexing layer that carries many logical
  streams over one control connection.
  - `encode_header(type, flags, stream_id, length)` packs a 12-byte
    big-endian frame header; `decode_header(data)` unpacks one into a
    `TcpMuxHeader` (raises `ValueError` on fewer than 12 bytes);
    `validate_tcp_mux_protocol(header)` checks the version and type.
  - Enums `TcpMuxType`, `TcpMuxFlag`, `GoAwayType` and `StreamState`.
  - `RingBuffer` – a bounded FIFO with `append` (raises `BufferError` when
    the data does not fit), `pop` and `read_from` (stores what fits).
  - `TmuxStream` – a stream id, state, send and receive windows and its
    transmit and receive buffers.
  - `MuxSession(output, tcp_mux=True, on_close=None, on_writable=None)` –
    hands out odd stream ids, keeps the stream registry, emits frame headers
    to `output`, answers pings, records go-away frames, applies window
    updates and data frames (`handle_stream`), and buffers, writes and closes
    streams (`stream_read`, `stream_write`, `stream_close`) under the
    flow-control windows.
- `xfrpc.socks5` – `is_socks5`, `parse_socks5_addr` (returns a `Socks5Addr`
  and the number of bytes used), `Socks5State` and `Socks5Handshake`, which
  answers the greeting, parses the CONNECT request and then forwards payload
  through callbacks. With `ss5=True` it accepts the bare address form with no
  greeting. Protocol violations raise `Socks5Error`.
- `xfrpc.udp_codec` – `base64_encode` and `base64_decode` for carrying UDP
  datagrams inside text messages; decoding raises `ValueError` on bad input.
- `xfrpc.tcp_redir` – `TcpRedirService`, an asyncio listener (also an async
  context manager) that relays an accepted local connection to
  `server_addr:remote_port`, and `start_tcp_redir_service`, which runs one on
  a background daemon thread and returns once it listens.
- `xfrpc.zip` – `deflate_write(source, gzip=False)` compresses with zlib
  framing, or gzip framing when `gzip` is set; `inflate_read(source,
  gzip=False)` reads a zlib stream, or a raw deflate stream when `gzip` is
  set, and raises `zlib.error` on corrupt or incomplete input.
- `xfrpc.utils` – `is_valid_ip_address`, `dns_unified` (lower-cases the host
  part, raises `ValueError` without a dot), `get_net_ifname`, `get_net_mac`,
  `show_net_ifname` and `s_sleep`. The interface helpers use `psutil`.

## Examples

```python
from xfrpc.tcpmux import TcpMuxFlag, TcpMuxType, decode_header, encode_header

frame = encode_header(TcpMuxType.WINDOW_UPDATE, TcpMuxFlag.SYN, 1, 0)
header = decode_header(frame)
```

```python
from xfrpc.tcpmux import MuxSession

frames = []
session = MuxSession(frames.append)
stream = session.open_stream(session.next_session_id())
sent = []
session.stream_write(stream, b"hello", sent.append)
```

```python
from xfrpc.utils import dns_unified, is_valid_ip_address

is_valid_ip_address("127.0.0.1")      # True
dns_unified("wWw.Example.com/Path")   # "www.example.com/Path"
```

```python
from xfrpc.zip import deflate_write, inflate_read

packed = deflate_write(b"hello hello hello")
plain = inflate_read(packed)
```

```python
from xfrpc.udp_codec import base64_decode, base64_encode

text = base64_encode(b"\x00\x01datagram")
data = base64_decode(text)
```

```python
from xfrpc.tcp_redir import start_tcp_redir_service

service = start_tcp_redir_service(3389, "203.0.113.10", 6000)
```

## Notes

`TcpRedirService` relays one connection at a time; a connection accepted
while another is being relayed is closed at once.

## What this package does not do

It has no command-line program and no configuration file reader. It does not
open or log in on a control connection to a server, does not register
proxies, and does not read frames off a socket by itself: `MuxSession`
and `Socks5Handshake` are driven by the caller, who feeds them bytes and
supplies the callbacks that send data out.