import os

# --- CONFIGURAÇÃO DE AMBIENTE (CRÍTICO) ---
# Força o Numpy a usar apenas 1 thread por operação.
# Assim cada thread do pool ocupa um único núcleo e o número de threads
# pedido pelo mestre é o paralelismo real do worker.
os.environ["OMP_NUM_THREADS"] = "1"
os.environ["MKL_NUM_THREADS"] = "1"
os.environ["OPENBLAS_NUM_THREADS"] = "1"
os.environ["VECLIB_MAXIMUM_THREADS"] = "1"
os.environ["NUMEXPR_NUM_THREADS"] = "1"

import socket
import sys
import threading
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from engine import POOL_LIMIT, multiply_concurrent, pi_concurrent
from protocol import DEFAULT_PORT, SERVICE_NAME, TransportError, error_response, log_error, recv_msg, send_msg
from registry import Registry, dispatch, install_policy

HOST = '0.0.0.0'
PORT = DEFAULT_PORT
WARMUP_LENGTH = 128

# =============================================================================
# WORKER: O OBJETO EXPORTADO
# =============================================================================

class AlgorithmEngine:
    """
    Executa no worker as partes dos algoritmos paralelos pedidas pelo mestre.
    Os dois métodos são a engine paralela local, sem nenhuma variação.
    """

    def __init__(self, warm_length=WARMUP_LENGTH, executor=None):
        self.executor = executor or ThreadPoolExecutor(max_workers=POOL_LIMIT)
        # Warm-up: a primeira chamada real não paga o custo de inicialização
        zeros = np.zeros((warm_length, warm_length))
        self.multiply(4, zeros, zeros)
        self.pi(100, 4)

    def pi(self, n, num_threads):
        return pi_concurrent(self.executor, n, num_threads)

    def multiply(self, num_threads, a, b_transpose):
        return multiply_concurrent(self.executor, a, b_transpose, num_threads)

    def shutdown(self):
        self.executor.shutdown(wait=True)

# =============================================================================
# SERVIDOR
# =============================================================================

def handle_client(conn, addr, registry):
    """Atende requisições sequenciais de uma conexão até o cliente fechar."""
    print(f"[CONEXÃO] {addr} conectado.")
    try:
        while True:
            try:
                req = recv_msg(conn)
            except TransportError:
                break
            except Exception as e:
                send_msg(conn, error_response('bad_request', f"Mensagem inválida: {e}"))
                break
            if req is None:
                break
            send_msg(conn, dispatch(registry, req))
    except OSError as e:
        log_error(f"{addr}: {e}")
    finally:
        conn.close()
        print(f"[CONEXÃO] {addr} encerrada.")


def create_server_socket(host=HOST, port=PORT):
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    server.bind((host, port))
    server.listen()
    return server


def serve_forever(server, registry):
    """Aceita conexões até o socket ser fechado; uma thread por cliente."""
    while True:
        try:
            conn, addr = server.accept()
        except OSError:
            break
        t = threading.Thread(target=handle_client, args=(conn, addr, registry))
        t.daemon = True
        t.start()


def stop_server(server):
    # shutdown() acorda o accept() bloqueado em outra thread
    try:
        server.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    server.close()


def start_worker(warm_length=WARMUP_LENGTH, host=HOST, port=PORT):
    """
    Cria o AlgorithmEngine, registra-o como "Alg" (rebind) e começa a
    aceitar conexões numa thread em segundo plano.
    Devolve (socket do servidor, registro, engine, thread).
    """
    install_policy()
    engine = AlgorithmEngine(warm_length)
    registry = Registry()
    registry.rebind(SERVICE_NAME, engine)
    server = create_server_socket(host, port)
    t = threading.Thread(target=serve_forever, args=(server, registry))
    t.daemon = True
    t.start()
    return server, registry, engine, t


def parse_args(argv):
    """Único argumento (opcional): dimensão da matriz quadrada de warm-up."""
    if len(argv) > 1:
        return int(argv[1])
    return WARMUP_LENGTH


def main(argv=None):
    argv = sys.argv if argv is None else argv
    try:
        warm_length = parse_args(argv)
    except ValueError:
        print(f"Uso: python {argv[0]} [DIMENSAO_WARMUP]")
        sys.exit(1)

    print(f"[INIT] Executando Warm-up ({warm_length}x{warm_length})...")
    try:
        server, registry, engine, t = start_worker(warm_length)
    except OSError as e:
        log_error(f"Não foi possível iniciar o servidor na porta {PORT}: {e}")
        sys.exit(1)

    print(f"[SERVER] Servidor de algoritmos paralelos iniciado em {HOST}:{PORT} "
          f"(serviços: {', '.join(registry.names())})")
    try:
        t.join()
    except KeyboardInterrupt:
        print("\n[SHUTDOWN] Parando...")
    finally:
        stop_server(server)
        engine.shutdown()


if __name__ == "__main__":
    main()
