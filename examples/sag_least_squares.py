import numpy as np
import sys
import os
import time

# --- 1. Add Project Root to Python Path ---
# This allows us to import our 'nanosag' package
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

# --- 2. Import All Our Bricks ---
from nanosag.aggregator import GradientAggregator
from nanosag.optim.sag import SAG


def make_regression(n_samples, n_features, noise=0.1, seed=0):
    """Synthetic linear regression data y = X @ w_true + noise."""
    rng = np.random.default_rng(seed)
    X = rng.standard_normal((n_samples, n_features))
    w_true = rng.standard_normal(n_features)
    y = X @ w_true + noise * rng.standard_normal(n_samples)
    return X, y, w_true


def batch_gradient(w, X_batch, y_batch, n_samples):
    """
    Gradient of this batch's share of the mean squared error
    0.5 * ||X w - y||^2 / n_samples. Summing over all batches gives
    the full gradient.
    """
    residual = X_batch @ w - y_batch
    return X_batch.T @ residual / n_samples


# --- 3. Main Training Script ---
if __name__ == "__main__":

    # --- Hyperparameters ---
    N_SAMPLES = 1000
    N_FEATURES = 20
    BATCH_SIZE = 50
    NUM_EPOCHS = 30
    SEED = 0

    X, y, w_true = make_regression(N_SAMPLES, N_FEATURES, seed=SEED)
    batches = [slice(start, start + BATCH_SIZE) for start in range(0, N_SAMPLES, BATCH_SIZE)]

    # Step size 1 / (16 L), L being the largest curvature of the loss
    L = np.linalg.eigvalsh(X.T @ X / N_SAMPLES).max()
    LEARNING_RATE = 1.0 / (16 * L)

    # --- Initialize Parameters, Gradient Tracker and Optimizer ---
    w = np.zeros(N_FEATURES)
    # One component per minibatch
    grad = GradientAggregator.zeros(len(batches), w.shape)
    optimizer = SAG([w], [grad], lr=LEARNING_RATE)

    print(f"\n--- Starting Training ({len(batches)} sub-gradients, lr={LEARNING_RATE:.4f}) ---")

    rng = np.random.default_rng(SEED)
    start_time = time.time()

    for epoch in range(NUM_EPOCHS):
        for _ in range(len(batches)):
            # 1. Pick one minibatch at random
            i = rng.integers(len(batches))
            b = batches[i]

            # 2. Recompute only its sub-gradient; the aggregate is corrected in place
            grad.update(i, batch_gradient(w, X[b], y[b], N_SAMPLES))

            # 3. Optimizer Step: Update weights
            optimizer.step()

        loss = 0.5 * np.mean((X @ w - y) ** 2)
        print(f"Epoch [{epoch+1}/{NUM_EPOCHS}], Loss: {loss:.6f}, "
              f"Initialized: {grad.initialized_fraction():.2f}")

    end_time = time.time()
    print(f"\nTraining finished in {end_time - start_time:.2f} seconds.")
    print(f"Distance to true weights: {np.linalg.norm(w - w_true):.4f}")
