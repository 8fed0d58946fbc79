"""pyhpsolve.utils.diagnostics"""
import matplotlib.pyplot as plt

from pyhpsolve.config import StorageType


def plot_sparsity(global_matrix, ax=None, title=None, markersize=2):
    """Spy plot of an assembled global matrix (any storage)."""
    if ax is None:
        _, ax = plt.subplots(figsize=(5, 5))
    if global_matrix.storage is StorageType.SPARSE:
        ax.spy(global_matrix.data, markersize=markersize)
    else:
        ax.spy(global_matrix.to_dense(), precision=1e-14, markersize=markersize)
    ax.set_title(title or f"{global_matrix.storage.value}, n = {global_matrix.n}, "
                          f"bandwidth {global_matrix.bandwidth}")
    return ax
