"""
Engine paralela local: divide um job entre T slots de um pool de threads,
espera cada slot na ordem de submissão e combina os parciais.

Mesmo contrato do kernel sequencial (pi / multiply), então as engines são
intercambiáveis.
"""
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from kernel import as_matrix, multiply_sequential, pi_sequential, streaming_mean, transpose
from protocol import ClusterError, JobError, SlotExecutionError, log_error

ROWS_OF_A = "rows_of_a"
ROWS_OF_BT = "rows_of_bt"

# Limite de threads do pool. O ThreadPoolExecutor só cria uma thread nova
# quando não há nenhuma ociosa, então o pool cresce sob demanda até aqui.
POOL_LIMIT = 1024

# =============================================================================
# PARTICIONAMENTO (FOSTER: AGLOMERAÇÃO E MAPEAMENTO)
# =============================================================================

def split_sizes(total, parts):
    """
    Divide `total` unidades em `parts` blocos contíguos.
    Se parts > total, usa só `total` blocos. Os primeiros total % parts
    blocos recebem uma unidade a mais. parts < 1 é erro do chamador.
    """
    if total <= 0:
        return []
    if parts < 1:
        raise ValueError(f"Número de slots inválido: {parts}")
    parts = min(parts, total)
    base, extra = divmod(total, parts)
    return [base + 1 if i < extra else base for i in range(parts)]


def split_slices(total, parts):
    """Mesma divisão de split_sizes, em forma de slices [início, fim)."""
    slices = []
    start = 0
    for size in split_sizes(total, parts):
        slices.append(slice(start, start + size))
        start += size
    return slices


def samples_per_slot(n, slots):
    """ceil(n / slots): todo slot recebe o mesmo número de amostras."""
    if slots < 1:
        raise ValueError(f"Número de slots inválido: {slots}")
    return -(-n // slots)


def effective_samples(n, slots):
    """Total de amostras realmente usadas: o menor múltiplo de slots >= n."""
    return slots * samples_per_slot(n, slots)


def choose_axis(a, b_transpose):
    """Distribui as linhas de A se rows(A) >= rows(Bt); senão as de Bt."""
    return ROWS_OF_A if len(a) >= len(b_transpose) else ROWS_OF_BT


def split_operands(a, b_transpose, parts):
    """
    Gera as fatias de trabalho (a_fatia, bt_fatia) para até `parts` slots
    e devolve também o eixo escolhido.
    """
    axis = choose_axis(a, b_transpose)
    if axis == ROWS_OF_A:
        shares = [(a[s], b_transpose) for s in split_slices(len(a), parts)]
    else:
        shares = [(a, b_transpose[s]) for s in split_slices(len(b_transpose), parts)]
    return axis, shares


def stitch(axis, partials, rows, cols):
    """
    Monta C (rows x cols) com os parciais na ordem dos slots.
    Linhas de A: cada parcial é um bloco de linhas inteiras de C.
    Linhas de Bt: cada parcial é um bloco de colunas inteiras de C,
    escrito a partir do deslocamento acumulado.
    """
    c = np.empty((rows, cols), dtype=np.float64)
    offset = 0
    for part in partials:
        part = as_matrix(part)
        if axis == ROWS_OF_A:
            extent = part.shape[0]
            c[offset:offset + extent, :] = part
        else:
            extent = part.shape[1]
            c[:, offset:offset + extent] = part
        offset += extent
    expected = rows if axis == ROWS_OF_A else cols
    if offset != expected:
        raise ValueError(f"Parciais cobrem {offset} de {expected} linhas/colunas de C.")
    return c


def collect(futures, label="thread"):
    """
    Espera cada future na ordem de submissão.
    A primeira falha aborta o job antes da combinação.
    """
    results = []
    for slot, future in enumerate(futures):
        try:
            results.append(future.result())
        except JobError:
            raise
        except ClusterError as e:
            # Já registrado pela tarefa que fala com o servidor
            raise SlotExecutionError(slot, e.kind, str(e)) from e
        except Exception as e:
            log_error(f"{label} {slot}: {type(e).__name__}: {e}")
            raise SlotExecutionError(slot, 'execution', str(e)) from e
    return results

# =============================================================================
# MÉTODOS DE CÁLCULO (CONCORRENTE)
# =============================================================================

def slot_rngs(threads, seed=None):
    """Um gerador independente por slot (sementes derivadas, se houver)."""
    children = np.random.SeedSequence(seed).spawn(threads)
    return [np.random.default_rng(child) for child in children]


def pi_concurrent(executor, n, threads, seed=None):
    """
    Estimativa de Pi com `threads` slots de ceil(n / threads) amostras cada.
    O total efetivo é effective_samples(n, threads), que pode passar de n.
    A combinação é a média simples das estimativas dos slots, correta
    porque todos os slots têm o mesmo número de amostras.
    """
    per_thread = samples_per_slot(n, threads)
    futures = [executor.submit(pi_sequential, per_thread, rng)
               for rng in slot_rngs(threads, seed)]
    return streaming_mean(collect(futures))


def multiply_concurrent(executor, a, b_transpose, threads):
    """
    C = A * B (B transposta), distribuindo as linhas de A ou as de Bt
    (a maior das duas dimensões) entre até `threads` slots.
    """
    a = as_matrix(a)
    b_transpose = as_matrix(b_transpose)
    axis, shares = split_operands(a, b_transpose, threads)
    futures = [executor.submit(multiply_sequential, a_share, bt_share)
               for a_share, bt_share in shares]
    partials = collect(futures)
    return stitch(axis, partials, len(a), len(b_transpose))

# =============================================================================
# ENGINES
# =============================================================================

class SequentialEngine:
    """O kernel com a mesma interface das engines paralelas."""

    def pi(self, n, seed=None):
        return pi_sequential(n, np.random.default_rng(seed))

    def multiply(self, a, b, b_is_transposed=False):
        if not b_is_transposed:
            b = transpose(b)
        return multiply_sequential(a, b)

    def shutdown(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.shutdown()


class ConcurrentEngine(SequentialEngine):
    """
    Engine paralela local. O pool de threads é criado aqui e pertence à
    engine; encerrá-lo (shutdown / with) é responsabilidade de quem a criou.
    """

    def __init__(self, threads, executor=None, max_workers=None):
        self.threads = threads
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(max_workers=max_workers or POOL_LIMIT)

    def set_threads(self, threads):
        self.threads = threads

    def pi(self, n, seed=None):
        return pi_concurrent(self.executor, n, self.threads, seed)

    def multiply(self, a, b, b_is_transposed=False):
        if not b_is_transposed:
            b = transpose(b)
        return multiply_concurrent(self.executor, a, b, self.threads)

    def shutdown(self):
        if self._owns_executor:
            self.executor.shutdown(wait=True)
