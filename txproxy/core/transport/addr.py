import asyncio


def get_remote_addr(transport: asyncio.BaseTransport) -> tuple[str, int] | None:
    """Return (host, port) of the peer for IPv4/IPv6 sockets, None otherwise."""
    peer = transport.get_extra_info("peername")
    if isinstance(peer, (list, tuple)) and len(peer) >= 2:
        return str(peer[0]), int(peer[1])
    return None
