"""Client-side building blocks for an frp-style reverse proxy: stream multiplexing, SOCKS5, UDP coding, TCP redirection, compression and networking helpers."""

__version__ = "2.9.644"

__all__ = ["socks5", "tcp_redir", "tcpmux", "udp_codec", "utils", "zip"]