"""
Primitivas sequenciais (um único núcleo, sem threads, sem I/O).

Todas as camadas acima (engine local, engine distribuída e o worker) chamam
exatamente estas funções, então os resultados de cada slot têm a mesma
aritmética não importa onde foram calculados.
"""
import numpy as np

# Tamanho do bloco de amostras sorteadas de uma vez em pi_sequential
PI_BLOCK = 1 << 16


def as_matrix(m):
    """Converte listas aninhadas (ou arrays) em uma matriz float64 2-D."""
    return np.asarray(m, dtype=np.float64)


def pi_sequential(n, rng=None):
    """
    Estimativa de Pi por integração de Monte Carlo com n amostras:
    4 * E[sqrt(1 - x^2)], x ~ U[0, 1).

    A média é mantida de forma incremental (mean += (valor - mean) / i).
    As amostras são sorteadas em blocos; cada bloco de m amostras que
    termina na amostra i atualiza a média com mean += (media_bloco - mean) * m / i,
    que é a mesma atualização aplicada a m valores de uma vez.
    """
    if rng is None:
        rng = np.random.default_rng()
    mean = 0.0
    i = 0
    while i < n:
        m = min(PI_BLOCK, n - i)
        x = rng.random(m)
        i += m
        mean += (np.sqrt(1.0 - x * x).mean() - mean) * m / i
    return 4.0 * float(mean)


def multiply_sequential(a, b_transpose):
    """
    C = A * B, recebendo B já transposta.

    C[i][j] = soma_k A[i][k] * Bt[j][k], somando k da esquerda para a direita
    (uma multiplicação e uma soma separadas por termo). Cada elemento de C
    depende só da linha i de A e da linha j de Bt, então fatiar A ou Bt não
    muda nenhum bit do resultado.
    """
    a = as_matrix(a)
    b_transpose = as_matrix(b_transpose)
    c = np.zeros((a.shape[0], b_transpose.shape[0]), dtype=np.float64)
    for k in range(a.shape[1]):
        c += np.multiply.outer(a[:, k], b_transpose[:, k])
    return c


def transpose(m):
    return np.ascontiguousarray(as_matrix(m).T)


def multiply(a, b, b_is_transposed=False):
    """A * B; se b_is_transposed for False, B é transposta antes."""
    if not b_is_transposed:
        b = transpose(b)
    return multiply_sequential(a, b)


def streaming_mean(values):
    """Média incremental na ordem dada: mean += (m_i - mean) / i."""
    mean = 0.0
    for i, value in enumerate(values, start=1):
        mean += (value - mean) / i
    return mean
