"""
Registro de serviços nomeados.

Lado do worker: `Registry` associa nomes ("Alg") a objetos exportados e
`dispatch` atende uma requisição já deserializada.

Lado do cliente: `get_registry(endereco)` devolve o `RemoteRegistry` do
processo para aquele host (criado na primeira consulta e reutilizado
depois); `lookup(nome)` devolve um `RemoteService` que reaproveita a mesma
conexão entre chamadas.
"""
import threading

from protocol import (
    SERVICE_NAME,
    AccessDeniedError,
    NotBoundError,
    TransportError,
    call_request,
    connect,
    error_response,
    lookup_request,
    ok_response,
    parse_address,
    recv_msg,
    send_msg,
    unwrap,
)

# =============================================================================
# POLÍTICA DE ACESSO
# =============================================================================

class AccessPolicy:
    """Lista, por serviço, os métodos que podem ser chamados remotamente."""

    def __init__(self, allowed):
        self.allowed = {name: frozenset(methods) for name, methods in allowed.items()}

    def check(self, name, method):
        if method not in self.allowed.get(name, ()):
            raise AccessDeniedError(f"Método '{method}' não permitido em '{name}'.")


DEFAULT_POLICY = AccessPolicy({SERVICE_NAME: ('pi', 'multiply')})

_POLICY = None
_POLICY_LOCK = threading.Lock()


def install_policy(policy=None):
    """Instala a política do processo (uma única vez, no início)."""
    global _POLICY
    with _POLICY_LOCK:
        if _POLICY is None:
            _POLICY = policy if policy is not None else DEFAULT_POLICY
        return _POLICY


def current_policy():
    return install_policy()

# =============================================================================
# REGISTRO (LADO DO WORKER)
# =============================================================================

class Registry:
    def __init__(self):
        self._bindings = {}
        self._lock = threading.Lock()

    def rebind(self, name, obj):
        """Associa o nome ao objeto, substituindo qualquer entrada anterior."""
        with self._lock:
            self._bindings[name] = obj

    def unbind(self, name):
        with self._lock:
            if self._bindings.pop(name, None) is None:
                raise NotBoundError(name)

    def lookup(self, name):
        with self._lock:
            try:
                return self._bindings[name]
            except KeyError:
                raise NotBoundError(f"Nenhum objeto registrado como '{name}'.") from None

    def names(self):
        with self._lock:
            return sorted(self._bindings)


def dispatch(registry, request, policy=None):
    """Executa uma requisição e devolve a resposta (sempre um dict)."""
    policy = policy or current_policy()
    if not isinstance(request, dict) or 'op' not in request:
        return error_response('bad_request', f"Requisição inválida: {request!r}")

    try:
        obj = registry.lookup(request.get('name'))
        if request['op'] == 'lookup':
            return ok_response(True)
        if request['op'] != 'call':
            return error_response('bad_request', f"Operação desconhecida: {request['op']}")

        method = request.get('method')
        policy.check(request['name'], method)
        value = getattr(obj, method)(*request.get('args', ()))
        return ok_response(value)
    except (NotBoundError, AccessDeniedError) as e:
        return error_response(e.kind, str(e))
    except Exception as e:
        return error_response('remote', f"{type(e).__name__}: {e}")

# =============================================================================
# REGISTRO (LADO DO CLIENTE)
# =============================================================================

class RemoteService:
    """Proxy de um objeto remoto; uma conexão, uma chamada por vez."""

    def __init__(self, address, name, timeout=None):
        self.address = parse_address(address)
        self.name = name
        self.timeout = timeout
        self._sock = None
        self._lock = threading.Lock()

    def _request(self, request):
        with self._lock:
            if self._sock is None:
                self._sock = connect(self.address, self.timeout)
            try:
                send_msg(self._sock, request)
                response = recv_msg(self._sock)
            except (OSError, TransportError) as e:
                self._close_locked()
                if isinstance(e, TransportError):
                    raise
                host, port = self.address
                raise TransportError(f"Falha na comunicação com {host}:{port}: {e}") from e
            if response is None:
                self._close_locked()
        return unwrap(response)

    def ping(self):
        return self._request(lookup_request(self.name))

    def call(self, method, *args):
        return self._request(call_request(self.name, method, *args))

    def pi(self, n, num_threads):
        return self.call('pi', n, num_threads)

    def multiply(self, num_threads, a, b_transpose):
        return self.call('multiply', num_threads, a, b_transpose)

    def _close_locked(self):
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def close(self):
        with self._lock:
            self._close_locked()


class RemoteRegistry:
    """Registro de um host remoto; guarda os proxies já resolvidos."""

    def __init__(self, address, timeout=None):
        self.address = parse_address(address)
        self.timeout = timeout
        self._services = {}
        self._lock = threading.Lock()

    def lookup(self, name=SERVICE_NAME):
        with self._lock:
            service = self._services.get(name)
            if service is None:
                service = RemoteService(self.address, name, self.timeout)
                # Confirma que o nome está registrado antes de guardar o proxy
                service.ping()
                self._services[name] = service
            return service

    def close(self):
        with self._lock:
            for service in self._services.values():
                service.close()
            self._services.clear()


_REGISTRIES = {}
_REGISTRIES_LOCK = threading.Lock()


def get_registry(address, timeout=None):
    """
    Registro remoto do processo para o endereço (criado na 1a consulta).
    Cada timeout tem o seu registro, com as suas próprias conexões.
    """
    key = (parse_address(address), timeout)
    with _REGISTRIES_LOCK:
        registry = _REGISTRIES.get(key)
        if registry is None:
            registry = RemoteRegistry(key[0], timeout)
            _REGISTRIES[key] = registry
        return registry


def close_registries():
    with _REGISTRIES_LOCK:
        for registry in _REGISTRIES.values():
            registry.close()
        _REGISTRIES.clear()
