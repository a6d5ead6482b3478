"""
Fixtures compartilhadas: workers reais escutando em 127.0.0.1 numa porta
livre, atendidos por threads em segundo plano.
"""
import threading

import pytest

from registry import Registry, close_registries
from server import create_server_socket, serve_forever, start_worker, stop_server


def _address(server):
    host, port = server.getsockname()[:2]
    return f"{host}:{port}"


@pytest.fixture
def worker_factory():
    started = []

    def make():
        server, registry, engine, _ = start_worker(warm_length=4, host='127.0.0.1', port=0)
        started.append((server, engine))
        return _address(server)

    yield make

    close_registries()
    for server, engine in started:
        stop_server(server)
        engine.shutdown()


@pytest.fixture
def worker(worker_factory):
    return worker_factory()


@pytest.fixture
def workers(worker_factory):
    return [worker_factory() for _ in range(3)]


@pytest.fixture
def empty_registry_server():
    """Servidor sem nenhum objeto registrado (lookup de "Alg" falha)."""
    server = create_server_socket('127.0.0.1', 0)
    t = threading.Thread(target=serve_forever, args=(server, Registry()), daemon=True)
    t.start()
    yield _address(server)
    close_registries()
    stop_server(server)
