# conftest.py
import matplotlib
import matplotlib.pyplot as plt
import pytest


@pytest.fixture(autouse=True)
def mpl_test_backend():
    """Non-interactive backend; sparsity plots are closed after each test."""
    matplotlib.use('Agg')
    yield
    plt.close('all')
