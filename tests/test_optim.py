import numpy as np
import sys
import os
import pytest

# --- Test Setup ---
# Add project root to path so we can import 'nanosag'
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

from nanosag.aggregator import GradientAggregator
from nanosag.errors import InvalidArgument
from nanosag.optim.sag import SAG
# --- End Setup ---

# Minimize f(w) = sum_i 0.5 * ||w - t_i||^2, whose minimum is mean(t_i).
TARGETS = np.array([[1.0, -2.0], [3.0, 0.0], [-1.0, 4.0], [5.0, 2.0]])

def sub_gradient(w, i):
    return w - TARGETS[i]

def test_sag_full_pass_minimization():
    """
    Recomputing every sub-gradient each step is plain gradient descent
    on the full sum.
    """
    w = np.zeros(2)
    grad = GradientAggregator.zeros(len(TARGETS), w.shape)
    optimizer = SAG([w], [grad], lr=0.1)

    for _ in range(60):
        grad.update([(i, sub_gradient(w, i)) for i in range(len(TARGETS))])
        optimizer.step()

    assert np.allclose(w, TARGETS.mean(axis=0), atol=1e-6), \
           f"Optimization failed. Expected w={TARGETS.mean(axis=0)}, got w={w}"

def test_sag_one_sub_gradient_per_step():
    """
    Only one sub-gradient is recomputed per step; the stale ones
    are still part of the aggregate.
    """
    w = np.zeros(2)
    grad = GradientAggregator.zeros(len(TARGETS), w.shape)
    optimizer = SAG([w], [grad], lr=0.02)

    print("\nTraining to find w=mean(targets):")
    for step in range(600):
        i = step % len(TARGETS)
        grad.update(i, sub_gradient(w, i))
        optimizer.step()
        if step % 100 == 0:
            print(f"  Step {step+1}: w = {w}, fraction = {grad.initialized_fraction():.2f}")

    assert grad.initialized_fraction() == 1.0
    assert np.allclose(w, TARGETS.mean(axis=0), atol=1e-6), \
           f"Optimization failed. Expected w={TARGETS.mean(axis=0)}, got w={w}"

def test_sag_rescales_by_initialized_fraction():
    w = np.zeros(2)
    grad = GradientAggregator.zeros(4, w.shape)
    grad.update(0, np.array([1.0, 2.0]))
    SAG([w], [grad], lr=0.5).step()
    # 0.5 / (1/4) = 2
    assert np.allclose(w, [-2.0, -4.0])

def test_sag_plain_array_is_sgd():
    w = np.array([1.0, 2.0])
    SAG([w], [np.array([1.0, 1.0])], lr=0.5).step()
    assert np.allclose(w, [0.5, 1.5])

def test_sag_skips_unobserved_gradients():
    """A seeded but never updated aggregator does not move the parameter."""
    w = np.array([1.0, 2.0])
    grad = GradientAggregator.from_gradient(np.array([3.0, 3.0]), 3)
    SAG([w], [grad], lr=0.1).step()
    assert np.array_equal(w, [1.0, 2.0])

def test_sag_argument_errors():
    with pytest.raises(InvalidArgument):
        SAG([np.zeros(2)], [], lr=0.1)
    with pytest.raises(InvalidArgument):
        SAG([np.zeros(2)], [np.zeros(2)], lr=0.0)
