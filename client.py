"""
Mestre do cluster: gera os dados de tempo de execução das versões
sequencial, concorrente (threads locais) e distribuída (servidores) da
estimativa de Pi e da multiplicação de matrizes.

Os servidores precisam estar rodando (python server.py) antes das
medições distribuídas.
"""
import io
import math
import sys
import time
from collections import defaultdict

import numpy as np
import matplotlib
# Backend 'Agg' para gerar gráficos sem GUI
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import seaborn as sns

from distributed import DistributedEngine
from engine import ConcurrentEngine, SequentialEngine
from protocol import JobError, log_error

# =============================================================================
# CONFIGURAÇÃO
# =============================================================================

# Servidores disponíveis (hostname, porta padrão)
WORKERS = ["127.0.0.1"]

MAX_THREADS = 4
MAX_SAMPLES = 12_000_000
ROWS = 300
COLS = 300
# Amostras usam as sementes SEED, SEED + 1, ...
SEED = 42

PI_HEADER = ("NumServers", "NumThreadsPerServer", "NumSamples", "TimeSeconds", "Accuracy")
MULT_HEADER = ("NumServers", "NumThreadsPerServer", "TimeSeconds")


def server_sets(workers):
    """Uma lista de servidores por condição experimental: 1, 2, ... servidores."""
    return [list(workers[:s]) for s in range(1, len(workers) + 1)]


def sample_sizes(max_samples=MAX_SAMPLES):
    """12, 120, 1200, ... até max_samples."""
    sizes = []
    i = 12
    while i < max_samples:
        sizes.append(i)
        i *= 10
    sizes.append(max_samples)
    return sizes


def warmup(engines):
    """Mesmo warm-up que os servidores fazem, para não favorecer a execução remota."""
    for engine in engines:
        engine.pi(1000)
        engine.multiply(np.zeros((64, 64)), np.zeros((64, 64)))


def timed(fn, *args, **kwargs):
    t0 = time.perf_counter()
    value = fn(*args, **kwargs)
    return value, time.perf_counter() - t0

# =============================================================================
# MEDIÇÕES
# =============================================================================

def time_pi(servers_list, max_threads=MAX_THREADS, sizes=None, repetitions=1):
    """
    Linhas (servidores, threads, amostras, segundos, |pi - estimativa|).
    Sequencial = (0, 0); concorrente local = (0, t); distribuída = (s, t).
    """
    sizes = sizes or sample_sizes()
    rows = []
    sequential = SequentialEngine()
    with ConcurrentEngine(max_threads) as local:
        warmup([sequential, local])
        for _ in range(repetitions):
            for n in sizes:
                pi, secs = timed(sequential.pi, n)
                rows.append((0, 0, n, secs, abs(math.pi - pi)))
                for t in range(1, max_threads + 1):
                    local.set_threads(t)
                    pi, secs = timed(local.pi, n)
                    rows.append((0, t, n, secs, abs(math.pi - pi)))
                    for servers in servers_list:
                        with DistributedEngine(servers, t) as dist:
                            pi, secs = timed(dist.pi, n)
                        rows.append((len(servers), t, n, secs, abs(math.pi - pi)))
    return rows


def random_matrix(rows, cols, rng):
    return rng.random((rows, cols))


def time_mult(servers_list, max_threads=MAX_THREADS, rows=ROWS, cols=COLS,
              repetitions=1, seed=SEED):
    """
    Multiplicação de uma matriz rows x cols por um vetor cols x 1.
    Linhas (servidores, threads, segundos).
    """
    table = []
    sequential = SequentialEngine()
    with ConcurrentEngine(max_threads) as local:
        warmup([sequential, local])
        for sample in range(repetitions):
            rng = np.random.default_rng(seed + sample)
            a = random_matrix(rows, cols, rng)
            b = random_matrix(cols, 1, rng)
            _, secs = timed(sequential.multiply, a, b)
            table.append((0, 0, secs))
            for t in range(1, max_threads + 1):
                local.set_threads(t)
                _, secs = timed(local.multiply, a, b)
                table.append((0, t, secs))
                for servers in servers_list:
                    with DistributedEngine(servers, t) as dist:
                        _, secs = timed(dist.multiply, a, b)
                    table.append((len(servers), t, secs))
    return table

# =============================================================================
# GRÁFICOS E TABELAS
# =============================================================================

def format_tsv(header, rows):
    lines = ["\t".join(header)]
    lines.extend("\t".join(str(v) for v in row) for row in rows)
    return "\n".join(lines)


def mean_times(rows, time_index):
    """Tempo médio por (servidores, threads)."""
    groups = defaultdict(list)
    for row in rows:
        groups[(row[0], row[1])].append(row[time_index])
    return {key: sum(v) / len(v) for key, v in sorted(groups.items())}


def generate_table_str(times):
    t_serial = times.get((0, 0), 0.0)
    table = (
        "===== RESULTADO =====\n"
        f"{'Servidores':<12} {'Threads':<9} {'Tempo(s)':<14} {'SpeedUp':<10}\n"
    )
    for (servers, threads), secs in times.items():
        speedup = t_serial / secs if secs > 1e-9 else 1.0
        table += f"{servers:<12} {threads:<9} {secs:<14.6f} {speedup:.4f}\n"
    table += "====================="
    return table


def label_for(servers, threads):
    if servers == 0 and threads == 0:
        return 'SERIAL'
    if servers == 0:
        return f'LOCAL {threads}T'
    return f'{servers}S x {threads}T'


def generate_single_plot(title, times):
    labels = [label_for(*key) for key in times]
    values = list(times.values())

    fig, ax = plt.subplots(figsize=(max(8, len(labels) * 0.8), 6))
    bars = ax.bar(labels, values, color='#3498db')

    ax.set_ylabel('Tempo (s)')
    ax.set_title(title)
    ax.grid(True, axis='y', linestyle='--', alpha=0.7)
    ax.tick_params(axis='x', rotation=45)

    for bar in bars:
        height = bar.get_height()
        ax.annotate(f'{height:.4f}s',
                    xy=(bar.get_x() + bar.get_width() / 2, height),
                    xytext=(0, 3), textcoords="offset points",
                    ha='center', va='bottom', fontsize=8)

    return figure_bytes(fig)


def generate_consolidated_plot(history):
    """history: lista de (nome do experimento, {(servidores, threads): tempo})."""
    if not history:
        return None
    keys = sorted({key for _, times in history for key in times})
    x = np.arange(len(keys))
    width = 0.8 / len(history)

    fig, ax = plt.subplots(figsize=(10, 6))
    for i, (name, times) in enumerate(history):
        ax.bar(x + i * width, [times.get(key, 0.0) for key in keys], width, label=name)

    ax.set_xlabel('Configuração (servidores x threads)')
    ax.set_ylabel('Tempo (s)')
    ax.set_title('Análise Consolidada (Serial vs Concorrente vs Distribuído)')
    ax.set_xticks(x + width * (len(history) - 1) / 2)
    ax.set_xticklabels([label_for(*key) for key in keys], rotation=45)
    ax.legend()
    ax.grid(True, axis='y', linestyle='--', alpha=0.7)

    return figure_bytes(fig)


def plot_matrix(matrix, title):
    """Heatmap da matriz resultado, como PNG."""
    fig, ax = plt.subplots(figsize=(10, 8))
    # O heatmap é ideal para visualizar a distribuição dos valores em uma matriz
    sns.heatmap(matrix, cmap="viridis", annot=False, cbar=True, ax=ax)
    ax.set_title(title, fontsize=16)
    ax.set_xlabel(f"Colunas ({matrix.shape[1]})")
    ax.set_ylabel(f"Linhas ({matrix.shape[0]})")
    return figure_bytes(fig)


def figure_bytes(fig):
    buf = io.BytesIO()
    fig.savefig(buf, format='png')
    buf.seek(0)
    data = buf.read()
    plt.close(fig)
    return data


def save(nome_arq, data):
    with open(nome_arq, "wb") as f:
        f.write(data)
    print(f"[V] Gráfico salvo como: {nome_arq}")

# =============================================================================
# LÓGICA DO CLIENTE
# =============================================================================

def run_pi(workers, history):
    val = input("Número máximo de amostras: ").strip()
    max_samples = int(val) if val else MAX_SAMPLES
    rows = time_pi(server_sets(workers), sizes=sample_sizes(max_samples))
    print(format_tsv(PI_HEADER, rows))
    times = mean_times(rows, 3)
    print("\n" + generate_table_str(times))
    history.append((f"Pi ({max_samples})", times))
    save(f"grafico_pi_{max_samples}.png",
         generate_single_plot(f'Desempenho: Pi com {max_samples} amostras', times))


def run_mult(workers, history):
    val = input("Tamanho da matriz (RxC): ").strip()
    rows_a, cols_a = map(int, val.split('x')) if val else (ROWS, COLS)
    rows = time_mult(server_sets(workers), rows=rows_a, cols=cols_a)
    print(format_tsv(MULT_HEADER, rows))
    times = mean_times(rows, 2)
    print("\n" + generate_table_str(times))
    history.append((f"Mult {rows_a}x{cols_a}", times))
    save(f"grafico_M{rows_a}x{cols_a}.png",
         generate_single_plot(f'Desempenho: Matriz {rows_a}x{cols_a} * vetor', times))

    # Resultado de uma execução distribuída, para inspeção visual
    rng = np.random.default_rng(SEED)
    a = random_matrix(rows_a, cols_a, rng)
    b = random_matrix(cols_a, rows_a, rng)
    with DistributedEngine(workers, MAX_THREADS) as dist:
        c = dist.multiply(a, b)
    save(f"resultado_M{rows_a}x{cols_a}.png",
         plot_matrix(c, f"Matriz Resultado C ({c.shape}) - {len(workers)} servidores"))


def main(argv=None):
    argv = sys.argv if argv is None else argv
    workers = argv[1:] or WORKERS
    print(f"[CLIENTE] Servidores: {', '.join(workers)}")
    history = []

    while True:
        print("\n" + "=" * 30)
        print("MENU")
        print("1 - Tempo da estimativa de Pi")
        print("2 - Tempo da multiplicação de matrizes")
        print("3 - Resultados consolidados")
        print("sair - Encerrar")
        print("=" * 30)

        opcao = input("Opção: ").strip().lower()
        if opcao == 'sair':
            break

        try:
            if opcao == '1':
                run_pi(workers, history)
            elif opcao == '2':
                run_mult(workers, history)
            elif opcao == '3':
                img = generate_consolidated_plot(history)
                if img is None:
                    print("Nenhum resultado ainda.")
                else:
                    save("grafico_consolidado.png", img)
            else:
                print("Opção inválida!")
        except ValueError:
            print("Erro: entrada inválida.")
        except JobError as e:
            log_error(f"Job abortado: {e}")


if __name__ == "__main__":
    main()
