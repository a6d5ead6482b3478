import pickle
import socket
import struct
import sys

# =============================================================================
# CONFIGURAÇÃO
# =============================================================================

DEFAULT_PORT = 5000
SERVICE_NAME = "Alg"

# Cabeçalho: '>I' = Big-endian Unsigned Int (4 bytes) com o tamanho do corpo
HEADER = struct.Struct('>I')

# =============================================================================
# ERROS
# =============================================================================

class ClusterError(Exception):
    """Base de todos os erros de comunicação com os workers."""
    kind = "cluster"


class TransportError(ClusterError):
    """Falha de conexão ou de envio/recebimento no socket."""
    kind = "transport"


class NotBoundError(ClusterError):
    """O registro do worker não tem nenhum objeto com o nome pedido."""
    kind = "not_bound"


class AccessDeniedError(ClusterError):
    """A política de acesso do worker recusou o método."""
    kind = "access_denied"


class RemoteError(ClusterError):
    """O método executou no worker e levantou uma exceção."""
    kind = "remote"


class JobError(Exception):
    """Falha de um job inteiro (nenhum resultado parcial é combinado)."""


class SlotExecutionError(JobError):
    """Um slot (thread local ou servidor remoto) não produziu o seu parcial."""

    def __init__(self, slot, kind, message):
        super().__init__(f"slot {slot} falhou ({kind}): {message}")
        self.slot = slot
        self.kind = kind
        self.message = message


# Mapeia o 'kind' das respostas de erro para as exceções do cliente
ERROR_KINDS = {
    NotBoundError.kind: NotBoundError,
    AccessDeniedError.kind: AccessDeniedError,
    RemoteError.kind: RemoteError,
    "bad_request": RemoteError,
}


def log_error(msg):
    print(f"[ERRO] {msg}", file=sys.stderr)

# =============================================================================
# PROTOCOLO DE REDE
# =============================================================================

def send_msg(sock, data):
    """Empacota e envia dados: 4 bytes de tamanho + dados pickle."""
    msg = pickle.dumps(data, protocol=pickle.HIGHEST_PROTOCOL)
    sock.sendall(HEADER.pack(len(msg)) + msg)


def recv_msg(sock):
    """
    Recebe uma mensagem completa e devolve o objeto deserializado.
    Retorna None se o outro lado fechou a conexão antes do cabeçalho.
    """
    # 1. Ler o cabeçalho (tamanho)
    raw_msglen = recvall(sock, HEADER.size)
    if raw_msglen is None:
        return None
    msglen = HEADER.unpack(raw_msglen)[0]

    # 2. Ler o corpo da mensagem (payload)
    payload = recvall(sock, msglen)
    if payload is None:
        raise TransportError("Conexão interrompida antes de receber todos os dados.")
    return pickle.loads(payload)


def recvall(sock, n):
    """Garante o recebimento de exatamente n bytes."""
    data = bytearray()
    while len(data) < n:
        packet = sock.recv(n - len(data))
        if not packet:
            return None
        data.extend(packet)
    return bytes(data)

# =============================================================================
# MENSAGENS
# =============================================================================

def lookup_request(name):
    return {'op': 'lookup', 'name': name}


def call_request(name, method, *args):
    return {'op': 'call', 'name': name, 'method': method, 'args': args}


def ok_response(value=None):
    return {'status': 'ok', 'value': value}


def error_response(kind, message):
    return {'status': 'error', 'kind': kind, 'message': message}


def unwrap(response):
    """Devolve o valor de uma resposta 'ok' ou levanta o erro tipado."""
    if response is None:
        raise TransportError("Servidor encerrou a conexão.")
    if response.get('status') == 'ok':
        return response.get('value')
    exc_type = ERROR_KINDS.get(response.get('kind'), RemoteError)
    raise exc_type(response.get('message', ''))


def parse_address(address):
    """
    Aceita 'host', 'host:porta' ou (host, porta).
    Só o hostname é o caso normal; a porta padrão é DEFAULT_PORT.
    """
    if isinstance(address, tuple):
        host, port = address
        return host, int(port)
    host, sep, port = address.rpartition(':')
    if sep and port.isdigit():
        return host, int(port)
    return address, DEFAULT_PORT


def connect(address, timeout=None):
    host, port = parse_address(address)
    try:
        return socket.create_connection((host, port), timeout=timeout)
    except OSError as e:
        raise TransportError(f"Não foi possível conectar a {host}:{port}: {e}") from e
