import dataclasses
import datetime
import re
import uuid
from decimal import Decimal, InvalidOperation
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel

from txproxy.core.errors import DecodeError, EncodeError, RemoteError


INT64_MIN = -(2 ** 63)
UINT64_MAX = 2 ** 64 - 1

# key types that decode back to something hashable
_MAP_KEY_TYPES = (str, int, float, bytes, Decimal, datetime.date, uuid.UUID)


class RecordType(IntEnum):
    PRIMITIVE = 0
    ARRAY = 1
    OBJECT = 2
    DATE = 3
    REGEXP = 4
    MAP = 5
    SET = 6
    ERROR = 7
    BIGINT = 8
    BYTES = 9
    DECIMAL = 10


Records = list[list[Any]]


def _is_map_key(key: Any) -> bool:
    if isinstance(key, Enum):
        key = key.value
    return key is None or isinstance(key, _MAP_KEY_TYPES)


class _Encoder:
    def __init__(self) -> None:
        self.records: Records = []
        self._memo: dict[int, int] = {}
        # temporaries (e.g. model dumps) must outlive encoding so ids stay unique
        self._pinned: list[Any] = []

    def push(self, value: Any) -> int:
        if isinstance(value, Enum):
            return self.push(value.value)

        if value is None or isinstance(value, (bool, float, str)):
            return self._append(RecordType.PRIMITIVE, value)

        if isinstance(value, int):
            if INT64_MIN <= value <= UINT64_MAX:
                return self._append(RecordType.PRIMITIVE, int(value))
            return self._append(RecordType.BIGINT, str(value))

        if isinstance(value, uuid.UUID):
            return self._append(RecordType.PRIMITIVE, str(value))

        key = id(value)
        if key in self._memo:
            return self._memo[key]

        if isinstance(value, (bytes, bytearray, memoryview)):
            return self._reserve(key, RecordType.BYTES, bytes(value))

        if isinstance(value, (datetime.datetime, datetime.date)):
            return self._reserve(key, RecordType.DATE, value.isoformat())

        if isinstance(value, Decimal):
            return self._reserve(key, RecordType.DECIMAL, str(value))

        if isinstance(value, re.Pattern):
            payload = {"source": value.pattern, "flags": int(value.flags)}
            return self._reserve(key, RecordType.REGEXP, payload)

        if isinstance(value, (list, tuple)):
            index = self._reserve(key, RecordType.ARRAY, [])
            self.records[index][1] = [self.push(item) for item in value]
            return index

        if isinstance(value, (set, frozenset)):
            index = self._reserve(key, RecordType.SET, [])
            self.records[index][1] = [self.push(item) for item in value]
            return index

        if isinstance(value, dict):
            for k in value:
                if not _is_map_key(k):
                    raise EncodeError(
                        f"cannot encode mapping key of type {type(k).__name__}"
                    )
            kind = (
                RecordType.OBJECT
                if all(isinstance(k, str) for k in value)
                else RecordType.MAP
            )
            return self._push_mapping(key, kind, value.items())

        if isinstance(value, BaseException):
            return self._push_error(key, value)

        if isinstance(value, BaseModel):
            dumped = value.model_dump()
            self._pinned.append(dumped)
            return self._push_mapping(key, RecordType.OBJECT, dumped.items())

        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            fields = [
                (field.name, getattr(value, field.name))
                for field in dataclasses.fields(value)
            ]
            return self._push_mapping(key, RecordType.OBJECT, fields)

        raise EncodeError(f"cannot encode value of type {type(value).__name__}")

    def _push_mapping(self, key: int, kind: RecordType, items) -> int:
        index = self._reserve(key, kind, [])
        pairs = []
        for k, v in items:
            pairs.append([self.push(k), self.push(v)])
        self.records[index][1] = pairs
        return index

    def _push_error(self, key: int, error: BaseException) -> int:
        if isinstance(error, RemoteError):
            name, message = error.name, error.message
        else:
            name, message = type(error).__name__, str(error)

        payload: dict[str, Any] = {"name": name, "message": message}
        index = self._reserve(key, RecordType.ERROR, payload)

        code = getattr(error, "code", None)
        if isinstance(code, (str, int)) and not isinstance(code, bool):
            payload["code"] = str(code)

        meta = getattr(error, "meta", None)
        if meta is not None:
            payload["meta"] = self.push(meta)

        return index

    def _append(self, kind: RecordType, payload: Any) -> int:
        self.records.append([int(kind), payload])
        return len(self.records) - 1

    def _reserve(self, key: int, kind: RecordType, payload: Any) -> int:
        index = self._append(kind, payload)
        self._memo[key] = index
        return index


class _Decoder:
    def __init__(self, records: Any) -> None:
        if not isinstance(records, list) or not records:
            raise DecodeError("payload must be a non-empty list of records")

        self._records = records
        self._memo: dict[int, Any] = {}

    def load(self, index: Any) -> Any:
        if isinstance(index, bool) or not isinstance(index, int):
            raise DecodeError(f"invalid record index {index!r}")

        if index in self._memo:
            return self._memo[index]

        if not 0 <= index < len(self._records):
            raise DecodeError(f"dangling record index {index}")

        record = self._records[index]
        if not isinstance(record, (list, tuple)) or len(record) != 2:
            raise DecodeError(f"record {index} is not a [type, payload] pair")

        tag, payload = record
        try:
            kind = RecordType(tag)
        except ValueError:
            raise DecodeError(f"record {index} has unknown type {tag!r}") from None

        match kind:
            case RecordType.PRIMITIVE:
                if payload is not None and not isinstance(payload, (bool, int, float, str)):
                    raise DecodeError(f"record {index} is not a primitive")
                return self._keep(index, payload)

            case RecordType.ARRAY:
                items = self._keep(index, [])
                items.extend(self.load(i) for i in self._sequence(index, payload))
                return items

            case RecordType.OBJECT | RecordType.MAP:
                mapping = self._keep(index, {})
                for pair in self._sequence(index, payload):
                    if not isinstance(pair, (list, tuple)) or len(pair) != 2:
                        raise DecodeError(f"record {index} has a malformed entry")
                    k = self.load(pair[0])
                    try:
                        mapping[k] = self.load(pair[1])
                    except TypeError as ex:
                        raise DecodeError(f"record {index}: {ex}") from ex
                return mapping

            case RecordType.SET:
                items = self._keep(index, set())
                for i in self._sequence(index, payload):
                    try:
                        items.add(self.load(i))
                    except TypeError as ex:
                        raise DecodeError(f"record {index}: {ex}") from ex
                return items

            case RecordType.DATE:
                return self._keep(index, self._parse_date(index, payload))

            case RecordType.REGEXP:
                if not isinstance(payload, dict) or "source" not in payload:
                    raise DecodeError(f"record {index} is not a regular expression")
                try:
                    pattern = re.compile(payload["source"], payload.get("flags", 0))
                except (re.error, TypeError, ValueError) as ex:
                    raise DecodeError(f"record {index}: {ex}") from ex
                return self._keep(index, pattern)

            case RecordType.BIGINT:
                try:
                    return self._keep(index, int(payload))
                except (TypeError, ValueError) as ex:
                    raise DecodeError(f"record {index}: {ex}") from ex

            case RecordType.BYTES:
                if not isinstance(payload, (bytes, bytearray)):
                    raise DecodeError(f"record {index} is not a byte string")
                return self._keep(index, bytes(payload))

            case RecordType.DECIMAL:
                try:
                    return self._keep(index, Decimal(payload))
                except (InvalidOperation, TypeError, ValueError) as ex:
                    raise DecodeError(f"record {index}: invalid decimal") from ex

            case RecordType.ERROR:
                error = _error_from_payload(payload)
                if error is None:
                    raise DecodeError(f"record {index} is not an error")
                self._keep(index, error)
                if isinstance(payload, dict) and "meta" in payload:
                    error.meta = self.load(payload["meta"])
                return error

    def _keep(self, index: int, value: Any) -> Any:
        self._memo[index] = value
        return value

    @staticmethod
    def _sequence(index: int, payload: Any) -> list[Any]:
        if not isinstance(payload, (list, tuple)):
            raise DecodeError(f"record {index} payload must be a list")
        return list(payload)

    @staticmethod
    def _parse_date(index: int, payload: Any) -> datetime.date:
        if not isinstance(payload, str):
            raise DecodeError(f"record {index} is not a date")
        try:
            if "T" in payload:
                return datetime.datetime.fromisoformat(payload)
            return datetime.date.fromisoformat(payload)
        except ValueError as ex:
            raise DecodeError(f"record {index}: {ex}") from ex


def _error_from_payload(payload: Any) -> RemoteError | None:
    if not isinstance(payload, dict):
        return None

    name = payload.get("name")
    message = payload.get("message", "")
    if not isinstance(name, str) or not isinstance(message, str):
        return None

    code = payload.get("code")
    return RemoteError(name=name, message=message, code=None if code is None else str(code))


class StructuredCodec:
    """
    Encodes arbitrary value graphs into a flat list of `[type, payload]`
    records and back.

    Record 0 is the root value. Containers reference their children by
    record index, which lets shared and circular references survive the
    trip: decoding rebuilds one object per record instead of duplicating
    it or recursing forever.

    Exceptions are carried by shape only (`name`, `message`, optional
    `code` and `meta`) and always decode to `RemoteError`.

    The output only contains msgpack-native values, so it can be handed
    to any Serializer as is.
    """

    @classmethod
    def encode(cls, value: Any) -> Records:
        encoder = _Encoder()
        encoder.push(value)
        return encoder.records

    @classmethod
    def decode(cls, records: Any) -> Any:
        try:
            return _Decoder(records).load(0)
        except RecursionError as ex:
            raise DecodeError("payload nesting is too deep") from ex

    @classmethod
    def recover_error(cls, records: Any) -> RemoteError:
        """
        Best-effort decode of an error payload that failed strict decoding.

        The first ERROR record found is turned into a RemoteError; every
        other record, including the error's `meta`, is ignored.
        """
        if not isinstance(records, list):
            raise DecodeError("payload must be a list of records")

        for record in records:
            if not isinstance(record, (list, tuple)) or len(record) != 2:
                continue
            if record[0] != RecordType.ERROR:
                continue
            error = _error_from_payload(record[1])
            if error is not None:
                return error

        raise DecodeError("no error record found in payload")
