"""
Gated Recurrent Cells with Exact Back-Propagation Through Time

This package implements the forward and backward passes of gated recurrent
cells (LSTM, GRU, RAN, CFN) with their exact analytic gradients, written with
NumPy only. Every cell is one timestep of a recurrent unit; a sequence is a
chain of cells that share one group of parameters.

Modules:
    errors: Exception types raised by the library
    activations: Activation functions with derivatives of the activated output
    arrays: ValueCell and GradientCell (values, pre-activation, errors, relevance)
    params: Parameter tensors, gate parameters and parameter groups
    gate: Affine gate unit (weights, biases, recurrent weights)
    relevance: Epsilon-rule layer-wise relevance propagation utilities
    context: Context windows, cell sequences and cell pools
    cell: Common interface of the recurrent cells
    lstm, gru, ran, cfn: The four gated cell variants
    processor: Runs a whole sequence forward and backward
    optimizer: Gradient accumulation and the update method contract
    config: Configuration dataclass

Reference:
    - "Long Short-Term Memory" (Hochreiter & Schmidhuber, 1997)
    - "Learning Phrase Representations using RNN Encoder-Decoder" (Cho et al., 2014)
    - "Recurrent Additive Networks" (Lee et al., 2017)
    - "A recurrent neural network without chaos" (Laurent & von Brecht, 2016)
"""

import logging

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "1.0.0"
__author__ = "Gated Recurrent Cells Project"
