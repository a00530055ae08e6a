import datetime
import re
import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

import pytest
from pydantic import BaseModel

from txproxy.core.codec import RecordType, StructuredCodec
from txproxy.core.errors import DecodeError, EncodeError, RemoteError
from txproxy.infra.msgpack_serializer import MsgPackSerializer


def wire(value):
    """Encode, push through msgpack, decode."""
    serializer = MsgPackSerializer()
    raw = serializer.serialize(StructuredCodec.encode(value))
    return StructuredCodec.decode(serializer.deserialize(raw))


class Role(Enum):
    ADMIN = "admin"


@dataclass
class Point:
    x: int
    y: int


class Account(BaseModel):
    id: int
    email: str


@pytest.mark.ut
def test_primitives_survive_the_wire():
    value = {
        "none": None,
        "flag": True,
        "count": 42,
        "ratio": 0.5,
        "name": "ada",
        "nested": [1, [2, [3]]],
    }

    assert wire(value) == value


@pytest.mark.ut
def test_root_is_record_zero():
    records = StructuredCodec.encode({"a": 1})

    assert records[0][0] == RecordType.OBJECT
    assert records[1:] == [[RecordType.PRIMITIVE, "a"], [RecordType.PRIMITIVE, 1]]


@pytest.mark.ut
def test_rich_scalars():
    moment = datetime.datetime(2024, 5, 1, 12, 30, tzinfo=datetime.timezone.utc)
    value = {
        "at": moment,
        "day": datetime.date(2024, 5, 1),
        "price": Decimal("12.50"),
        "big": 2 ** 80,
        "negative_big": -(2 ** 70),
        "blob": b"\x00\x01\xff",
        "pattern": re.compile(r"^a+$", re.IGNORECASE),
        "tags": {"x", "y"},
    }

    decoded = wire(value)

    assert decoded["at"] == moment
    assert decoded["day"] == datetime.date(2024, 5, 1)
    assert not isinstance(decoded["day"], datetime.datetime)
    assert decoded["price"] == Decimal("12.50")
    assert decoded["big"] == 2 ** 80
    assert decoded["negative_big"] == -(2 ** 70)
    assert decoded["blob"] == b"\x00\x01\xff"
    assert decoded["pattern"].pattern == r"^a+$"
    assert decoded["pattern"].flags & re.IGNORECASE
    assert decoded["tags"] == {"x", "y"}


@pytest.mark.ut
def test_non_string_keys_become_map():
    records = StructuredCodec.encode({1: "one"})

    assert records[0][0] == RecordType.MAP
    assert wire({1: "one"}) == {1: "one"}
    assert wire({None: 0, 2.5: "x", b"k": 1}) == {None: 0, 2.5: "x", b"k": 1}


@pytest.mark.ut
@pytest.mark.parametrize(
    "value",
    [{(1, 2): "a"}, {1: "one", (2, 3): "pair"}, {frozenset({1}): "a"}],
)
def test_container_keys_are_rejected_on_encode(value):
    # arrays and sets decode to unhashable containers
    with pytest.raises(EncodeError):
        StructuredCodec.encode(value)


@pytest.mark.ut
def test_convenience_values_are_flattened():
    user_id = uuid.uuid4()
    value = {
        "id": user_id,
        "role": Role.ADMIN,
        "point": Point(1, 2),
        "account": Account(id=1, email="a@b.c"),
        "pair": (1, 2),
    }

    decoded = wire(value)

    assert decoded == {
        "id": str(user_id),
        "role": "admin",
        "point": {"x": 1, "y": 2},
        "account": {"id": 1, "email": "a@b.c"},
        "pair": [1, 2],
    }


@pytest.mark.ut
def test_self_referencing_container():
    node = {"name": "root"}
    node["self"] = node
    items = [1]
    items.append(items)

    decoded = wire({"node": node, "items": items})

    assert decoded["node"]["self"] is decoded["node"]
    assert decoded["items"][1] is decoded["items"]


@pytest.mark.ut
def test_shared_reference_is_kept_once():
    shared = {"x": 1}
    records = StructuredCodec.encode([shared, shared])

    decoded = StructuredCodec.decode(records)

    assert decoded[0] is decoded[1]
    assert sum(1 for kind, _ in records if kind == RecordType.OBJECT) == 1


@pytest.mark.ut
def test_error_keeps_name_message_code_and_meta():
    class UniqueViolation(Exception):
        def __init__(self, message):
            super().__init__(message)
            self.code = "P2002"
            self.meta = {"target": ["email"]}

    decoded = wire(UniqueViolation("Unique constraint failed"))

    assert isinstance(decoded, RemoteError)
    assert decoded.name == "UniqueViolation"
    assert decoded.message == "Unique constraint failed"
    assert decoded.code == "P2002"
    assert decoded.meta == {"target": ["email"]}
    assert str(decoded) == "UniqueViolation [P2002]: Unique constraint failed"


@pytest.mark.ut
def test_remote_error_is_reencoded_with_its_original_name():
    original = RemoteError("ValueError", "boom")

    decoded = wire({"error": original})

    assert decoded["error"].name == "ValueError"
    assert decoded["error"].code is None


@pytest.mark.ut
def test_error_meta_may_point_back_to_the_error():
    error = ValueError("loop")
    error.meta = {"cause": error}

    decoded = wire(error)

    assert decoded.meta["cause"] is decoded


@pytest.mark.ut
def test_unsupported_value():
    with pytest.raises(EncodeError):
        StructuredCodec.encode({"fn": lambda: None})


@pytest.mark.ut
@pytest.mark.parametrize("payload", [
    None,
    [],
    "records",
    [[99, None]],
    [[RecordType.ARRAY, [5]]],
    [[RecordType.ARRAY, "not a list"]],
    [[RecordType.OBJECT, [[0]]]],
    [[RecordType.PRIMITIVE, {"a": 1}]],
    [[RecordType.DATE, "yesterday"]],
    [[RecordType.DECIMAL, "twelve"]],
    [[RecordType.BIGINT, "1e5x"]],
    [[RecordType.BYTES, "text"]],
    [[RecordType.REGEXP, {"source": "("}]],
    [[RecordType.ERROR, {"message": "no name"}]],
    [[RecordType.ARRAY, [True]]],
    [["0", 1]],
])
def test_malformed_payloads_raise_decode_error(payload):
    with pytest.raises(DecodeError):
        StructuredCodec.decode(payload)


@pytest.mark.ut
def test_deep_nesting_raises_decode_error():
    records = [[RecordType.ARRAY, [i + 1]] for i in range(100_000)]
    records.append([RecordType.PRIMITIVE, 0])

    with pytest.raises(DecodeError):
        StructuredCodec.decode(records)


@pytest.mark.ut
def test_recover_error_ignores_broken_meta():
    records = [
        [RecordType.ERROR, {"name": "EngineError", "message": "bad", "code": "P2028", "meta": 7}],
    ]

    with pytest.raises(DecodeError):
        StructuredCodec.decode(records)

    error = StructuredCodec.recover_error(records)
    assert error.name == "EngineError"
    assert error.code == "P2028"
    assert error.meta is None


@pytest.mark.ut
def test_recover_error_without_error_record():
    with pytest.raises(DecodeError):
        StructuredCodec.recover_error([[RecordType.PRIMITIVE, 1]])
