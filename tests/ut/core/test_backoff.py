from unittest.mock import patch

import pytest

from txproxy.core.connections.client import ProxyConnection
from txproxy.core.errors import TransportError
from txproxy.core.throttling.backoff import ExponentialBackoff
from txproxy.infra.msgpack_serializer import MsgPackSerializer


@pytest.mark.ut
def test_delays_without_jitter():
    b = ExponentialBackoff(initial=1.0, factor=2.0, maximum=10.0, jitter=0, attempts=4)

    assert list(b.delays()) == [1.0, 2.0, 4.0]


@pytest.mark.ut
def test_delays_with_jitter():
    b = ExponentialBackoff(initial=1.0, factor=2.0, maximum=10.0, jitter=1.0, attempts=3)

    first, second = b.delays()
    assert 1.0 <= first <= 2.0
    assert 2.0 <= second <= 3.0


@pytest.mark.ut
def test_maximum_cap():
    b = ExponentialBackoff(initial=0.5, factor=2.0, maximum=5.0, jitter=0, attempts=7)

    assert list(b.delays()) == [0.5, 1.0, 2.0, 4.0, 5.0, 5.0]


@pytest.mark.ut
def test_each_sequence_starts_over():
    b = ExponentialBackoff(initial=1.0, factor=2.0, maximum=10.0, jitter=0, attempts=3)

    assert list(b.delays()) == list(b.delays()) == [1.0, 2.0]


@pytest.mark.ut
def test_single_attempt_never_waits():
    assert list(ExponentialBackoff(attempts=1).delays()) == []
    with pytest.raises(ValueError):
        ExponentialBackoff(attempts=0)


@pytest.mark.ut
@pytest.mark.asyncio
async def test_connect_gives_up_after_the_last_attempt():
    backoff = ExponentialBackoff(initial=0.0, jitter=0, attempts=3)
    connection = ProxyConnection("127.0.0.1:1", MsgPackSerializer(), backoff=backoff)

    with patch("asyncio.open_connection", side_effect=ConnectionRefusedError("refused")) as opened:
        with pytest.raises(TransportError):
            await connection.connect()

    assert opened.call_count == 3
    assert not connection.connected
