"""
Engine distribuída: divide o job entre S servidores (um slot por servidor,
na ordem da lista) e, opcionalmente, um slot extra executado no próprio
mestre por uma ConcurrentEngine com `master_threads` threads.

Cada servidor recebe a sua fatia e a divide de novo entre as suas
`threads_per_server` threads (ver server.AlgorithmEngine). Os parciais são
combinados exatamente como na engine local.
"""
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from engine import (
    ConcurrentEngine,
    SequentialEngine,
    collect,
    samples_per_slot,
    split_operands,
    stitch,
)
from kernel import as_matrix, streaming_mean, transpose
from protocol import SERVICE_NAME, ClusterError, log_error
from registry import get_registry

# Slot remoto: target = endereço do servidor
# Slot local (mestre): target = número de threads locais
Slot = namedtuple('Slot', ['kind', 'target'])

REMOTE = "remote"
LOCAL = "local"


def slot_seeds(count, seed=None):
    """
    Sementes inteiras derivadas para cada slot. Só o slot local as usa;
    os servidores sorteiam com os seus próprios geradores.
    """
    if seed is None:
        return [None] * count
    return [int(child.generate_state(1)[0])
            for child in np.random.SeedSequence(seed).spawn(count)]


def lookup_service(address, timeout=None):
    """Resolve o serviço "Alg" no registro do servidor (conexão reaproveitada)."""
    return get_registry(address, timeout).lookup(SERVICE_NAME)


class DistributedEngine(SequentialEngine):

    def __init__(self, servers, threads_per_server, master_threads=0,
                 executor=None, timeout=None):
        self.servers = list(servers)
        self.threads_per_server = threads_per_server
        self.master_threads = master_threads
        self.timeout = timeout
        self._owns_executor = executor is None
        # Uma thread por slot bloqueada em I/O de rede
        self.executor = executor or ThreadPoolExecutor(max_workers=len(self.servers) + 1)

    # -------------------------------------------------------------------------
    # Plano de slots
    # -------------------------------------------------------------------------

    def slot_count(self):
        return len(self.servers) + (1 if self.master_threads > 0 else 0)

    def plan(self, count):
        """
        Os `count` slots do job: servidores na ordem da lista e, se houver
        threads no mestre, o slot local por último.
        """
        if count <= 0:
            return []
        remote = count - 1 if self.master_threads > 0 else count
        slots = [Slot(REMOTE, address) for address in self.servers[:remote]]
        if self.master_threads > 0:
            slots.append(Slot(LOCAL, self.master_threads))
        return slots

    # -------------------------------------------------------------------------
    # Execução de um slot
    # -------------------------------------------------------------------------

    def _remote_call(self, address, method, *args):
        try:
            service = lookup_service(address, self.timeout)
            return getattr(service, method)(*args)
        except ClusterError as e:
            log_error(f"Falha ao comunicar com o servidor {address}: {e}")
            raise

    def _run_pi(self, slot, n, seed):
        if slot.kind == LOCAL:
            with ConcurrentEngine(slot.target) as local:
                return local.pi(n, seed)
        return self._remote_call(slot.target, 'pi', n, self.threads_per_server)

    def _run_multiply(self, slot, a, b_transpose):
        if slot.kind == LOCAL:
            with ConcurrentEngine(slot.target) as local:
                return local.multiply(a, b_transpose, b_is_transposed=True)
        return self._remote_call(slot.target, 'multiply', self.threads_per_server,
                                 a, b_transpose)

    # -------------------------------------------------------------------------
    # Contrato {pi, multiply}
    # -------------------------------------------------------------------------

    def pi(self, n, seed=None):
        """
        Cada slot recebe ceil(n / k) amostras; cada servidor aumenta o seu
        número de amostras da mesma forma ao dividir entre as suas threads.
        """
        slots = self.plan(self.slot_count())
        per_slot = samples_per_slot(n, len(slots))
        futures = [self.executor.submit(self._run_pi, slot, per_slot, slot_seed)
                   for slot, slot_seed in zip(slots, slot_seeds(len(slots), seed))]
        return streaming_mean(collect(futures, label="servidor"))

    def multiply(self, a, b, b_is_transposed=False):
        if not b_is_transposed:
            b = transpose(b)
        a = as_matrix(a)
        b = as_matrix(b)
        axis, shares = split_operands(a, b, self.slot_count())
        slots = self.plan(len(shares))
        futures = [self.executor.submit(self._run_multiply, slot, a_share, bt_share)
                   for slot, (a_share, bt_share) in zip(slots, shares)]
        partials = collect(futures, label="servidor")
        return stitch(axis, partials, len(a), len(b))

    def shutdown(self):
        if self._owns_executor:
            self.executor.shutdown(wait=True)
