import numpy as np

from ..aggregator import initialized_fraction
from ..errors import InvalidArgument


class SAG:
    """
    Implements the Stochastic Average Gradient (SAG) descent step.

    Each parameter is paired with a gradient source, normally a
    GradientAggregator holding one sub-gradient per data point or minibatch.
    The aggregate is rescaled by the fraction of sub-gradients observed so
    far, so early steps are not biased towards zero.
    """

    def __init__(self, params: list, grads: list, lr: float = 0.01):
        """
        Initializes the optimizer.

        Args:
            params (list): numpy arrays updated in place.
            grads (list): One gradient source per parameter (GradientAggregator
                or plain array).
            lr (float): The learning rate.
        """
        if len(params) != len(grads):
            raise InvalidArgument(f"Got {len(params)} parameters but {len(grads)} gradients")
        if lr <= 0:
            raise InvalidArgument(f"lr must be positive, got {lr}")
        self.params = params
        self.grads = grads
        self.lr = lr

    def step(self):
        """
        Performs a single optimization step.

        Sources with no observed sub-gradient yet are skipped.
        """
        for p, g in zip(self.params, self.grads):
            f = initialized_fraction(g)
            if f == 0:
                continue
            # p = p - (lr / f) * sum of sub-gradients
            p -= (self.lr / f) * np.asarray(g)
