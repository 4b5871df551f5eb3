"""
Layer-wise Relevance Propagation Utilities

Relevance is an explanation signal, not a gradient: it redistributes how much
each output value "matters" onto the inputs that produced it, proportionally
to their contributions.

The epsilon rule is used. For y_j = sum_i c_ji (the contributions c_ji of
each input x_i to y_j, biases already spread over the inputs):

    R(x_i) = sum_j R(y_j) * (c_ji + eps_j / n) / (y_j + eps_j)

    eps_j = +eps if y_j >= 0 else -eps      (avoids divisions by zero)

Since sum_i (c_ji + eps_j / n) = y_j + eps_j, the rule is conservative:
sum_i R(x_i) == sum_j R(y_j).

Reference:
    "On Pixel-Wise Explanations for Non-Linear Classifier Decisions by
    Layer-Wise Relevance Propagation" (Bach et al., 2015)
    "Explaining Recurrent Neural Network Predictions in Sentiment Analysis"
    (Arras et al., 2017)
"""

import numpy as np

RELEVANCE_EPSILON = 0.01


def non_zero_sign(array: np.ndarray) -> np.ndarray:
    """Sign of each value, with 0 mapped to +1."""
    return np.where(array >= 0, 1.0, -1.0)


def relevance_of_array(
    x: np.ndarray,
    y: np.ndarray,
    y_relevance: np.ndarray,
    contributions: np.ndarray,
) -> np.ndarray:
    """
    Distribute the relevance of y onto x.

    Args:
        x: Input vector, shape (n,)
        y: Output vector, shape (m,), with y_j == sum_i contributions[j, i]
        y_relevance: Relevance of y, shape (m,)
        contributions: Matrix of shape (m, n): contribution of x_i to y_j

    Returns:
        Relevance of x, shape (n,)
    """
    n = x.size
    eps = non_zero_sign(y) * RELEVANCE_EPSILON

    # (m, n) shares of each y_j, weighted by R(y_j) / (y_j + eps_j)
    shares = contributions + (eps / n)[:, np.newaxis]
    weights = y_relevance / (y + eps)

    return weights @ shares


def relevance_partition_input(
    y_relevance: np.ndarray,
    y: np.ndarray,
    y_input: np.ndarray,
    y_recurrent: np.ndarray,
    n_partitions: int = 2,
) -> np.ndarray:
    """
    The share of R(y) owed to the input part of y = y_input + y_recurrent.

    partition = R(y) * (y_input + eps / n) / (y + eps)

    The epsilon sign is taken from y_recurrent for both partitions, so that
    the input and recurrent partitions always sum back to R(y).
    """
    eps = non_zero_sign(y_recurrent) * RELEVANCE_EPSILON
    return y_relevance * (y_input + eps / n_partitions) / (y + eps)


def relevance_partition_recurrent(
    y_relevance: np.ndarray,
    y: np.ndarray,
    y_recurrent: np.ndarray,
    n_partitions: int = 2,
) -> np.ndarray:
    """
    The share of R(y) owed to the recurrent part of y = y_input + y_recurrent.

    partition = R(y) * (y_recurrent + eps / n) / (y + eps)
    """
    eps = non_zero_sign(y_recurrent) * RELEVANCE_EPSILON
    return y_relevance * (y_recurrent + eps / n_partitions) / (y + eps)
