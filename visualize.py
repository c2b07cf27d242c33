# visualize.py
import os
import matplotlib.pyplot as plt


def _ensure_dir(outpath):
    dirname = os.path.dirname(outpath)
    if dirname:
        os.makedirs(dirname, exist_ok=True)


def plot_outcomes(summary, outpath):
    """Hit / miss / eviction counts of one run, with the hit rate in the title."""
    _ensure_dir(outpath)
    plt.figure(figsize=(5, 4))
    labels = ['Hits', 'Misses', 'Evictions']
    counts = [summary.hits, summary.misses, summary.evictions]
    bars = plt.bar(labels, counts, color=['tab:green', 'tab:orange', 'tab:red'])
    plt.bar_label(bars)
    plt.title(f"{summary.geometry.label()} (hit rate {summary.hit_rate:.1%})")
    plt.ylabel("Count")
    plt.tight_layout()
    plt.savefig(outpath)
    plt.close()


def plot_sweep(summaries, outpath):
    _ensure_dir(outpath)
    labels = [s.geometry.label() for s in summaries]
    fig, ax = plt.subplots(figsize=(max(6, len(labels) * 0.9), 4))
    ax.bar(labels, [s.evictions for s in summaries], color='tab:red', alpha=0.4, label='Evictions')
    ax.set_ylabel("Evictions")
    ax.tick_params(axis='x', rotation=45)
    rate_ax = ax.twinx()
    rate_ax.plot(labels, [s.hit_rate * 100 for s in summaries], marker='o', color='tab:blue', label='Hit rate')
    rate_ax.set_ylabel("Hit rate (%)")
    rate_ax.set_ylim(0, 100)
    ax.set_title("Geometry sweep")
    ax.grid(True, axis='y')
    fig.tight_layout()
    fig.savefig(outpath)
    plt.close(fig)
