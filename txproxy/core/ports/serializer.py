from typing import Protocol, Any


class Serializer(Protocol):
    """
    Defines the interface for encoding/decoding the frames exchanged
    between the client interceptor and the proxy.

    Frames only ever contain msgpack-native values (the structured codec
    flattens everything else beforehand), so implementations must be:
    - deterministic
    - pure (no side effects)
    - safe against malformed input
    """

    def serialize(self, message: Any) -> bytes:
        """Encode a frame payload into bytes suitable for network transport."""

    def deserialize(self, data: bytes) -> Any:
        """Decode bytes received from the network into a frame payload."""
