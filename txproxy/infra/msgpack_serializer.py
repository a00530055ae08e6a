import msgpack
from typing import Any

from txproxy.core.ports.serializer import Serializer


class MsgPackSerializer(Serializer):
    """
    MsgPack-based implementation of the Serializer interface.

    Binary payloads (`bytes` records produced by the structured codec) are
    kept as msgpack `bin` values, and strings are always decoded as UTF-8.
    """
    def serialize(self, message: Any) -> bytes:
        return msgpack.packb(message, use_bin_type=True)

    def deserialize(self, data: bytes) -> Any:
        return msgpack.unpackb(data, raw=False, strict_map_key=False)
