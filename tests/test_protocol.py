import socket

import numpy as np
import pytest

from protocol import (
    DEFAULT_PORT,
    AccessDeniedError,
    NotBoundError,
    RemoteError,
    TransportError,
    call_request,
    connect,
    error_response,
    ok_response,
    parse_address,
    recv_msg,
    send_msg,
    unwrap,
)


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    yield a, b
    a.close()
    b.close()


def test_send_and_receive_nested_arrays(pair):
    a, b = pair
    matrix = np.arange(12, dtype=np.float64).reshape(3, 4)
    send_msg(a, call_request("Alg", "multiply", 2, matrix, matrix.tolist()))
    msg = recv_msg(b)
    assert msg['op'] == 'call'
    assert msg['method'] == 'multiply'
    assert msg['args'][0] == 2
    assert np.array_equal(msg['args'][1], matrix)
    assert msg['args'][2] == matrix.tolist()


def test_several_messages_on_one_connection(pair):
    a, b = pair
    for i in range(3):
        send_msg(a, ok_response(i))
    assert [recv_msg(b)['value'] for _ in range(3)] == [0, 1, 2]


def test_recv_returns_none_when_peer_closes(pair):
    a, b = pair
    a.close()
    assert recv_msg(b) is None


def test_truncated_body_is_a_transport_error(pair):
    a, b = pair
    a.sendall(b'\x00\x00\x00\x10abc')
    a.close()
    with pytest.raises(TransportError):
        recv_msg(b)


def test_unwrap():
    assert unwrap(ok_response(3.5)) == 3.5
    with pytest.raises(NotBoundError):
        unwrap(error_response('not_bound', 'Alg'))
    with pytest.raises(AccessDeniedError):
        unwrap(error_response('access_denied', 'x'))
    with pytest.raises(RemoteError):
        unwrap(error_response('remote', 'boom'))
    with pytest.raises(RemoteError):
        unwrap(error_response('something_new', 'boom'))
    with pytest.raises(TransportError):
        unwrap(None)


def test_parse_address():
    assert parse_address("rpi1.local") == ("rpi1.local", DEFAULT_PORT)
    assert parse_address("127.0.0.1:6000") == ("127.0.0.1", 6000)
    assert parse_address(("localhost", "7000")) == ("localhost", 7000)


def test_connect_refused_is_transport_error():
    spare = socket.socket()
    spare.bind(('127.0.0.1', 0))
    port = spare.getsockname()[1]
    spare.close()
    with pytest.raises(TransportError):
        connect(f"127.0.0.1:{port}", timeout=2)
