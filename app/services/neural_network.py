"""
Small feedforward neural networks for the bot AI.

Used by the strategic planner (strategy selection) and the learning hook
(PPO actor and critic).

Architecture:
- Hidden layers: ReLU
- Output layer: softmax (policies, strategy choice) or linear (value heads)
- Xavier-uniform initialisation, plain SGD updates

Weights are saved as JSON ({layer_sizes, weights, biases, output_activation}).
"""

import json
import logging
import math
import os
from typing import List, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


class NeuralNetwork:
    """
    Dense ReLU multilayer perceptron over float64 numpy vectors.

    Layer ``i`` is an ``(n_i, n_{i+1})`` weight matrix plus a bias vector,
    so one forward pass is a chain of ``x @ W + b`` products. Strategy
    selection trains a softmax head with ``train_step``. The PPO actor
    (softmax) and critic (linear) push their loss gradients straight into
    ``apply_output_gradient``.
    """

    def __init__(
        self,
        layer_sizes: List[int],
        learning_rate: float = 0.001,
        output_activation: str = "softmax",
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Args:
            layer_sizes: widths from input to output, at least two entries
            learning_rate: SGD step size
            output_activation: "softmax" or "linear"
            rng: Generator for the Xavier draws, pass a seeded one for
                reproducible agents

        Raises:
            ValueError: on a bad layer list or activation name
        """
        if len(layer_sizes) < 2 or any(n <= 0 for n in layer_sizes):
            raise ValueError(f"Invalid layer sizes: {layer_sizes}")
        if output_activation not in ("softmax", "linear"):
            raise ValueError(f"Unknown output activation: {output_activation}")

        self.layer_sizes = list(layer_sizes)
        self.learning_rate = learning_rate
        self.output_activation = output_activation
        self.num_layers = len(layer_sizes)
        rng = rng if rng is not None else np.random.default_rng()

        # Xavier uniform bounds, biases start at zero
        self.weights: List[np.ndarray] = []
        self.biases: List[np.ndarray] = []
        for i in range(self.num_layers - 1):
            limit = math.sqrt(6 / (layer_sizes[i] + layer_sizes[i + 1]))
            self.weights.append(rng.uniform(-limit, limit, size=(layer_sizes[i], layer_sizes[i + 1])))
            self.biases.append(np.zeros(layer_sizes[i + 1]))

        # Activations and pre-activations of the last forward pass
        self._layer_outputs: List[np.ndarray] = []
        self._layer_inputs: List[np.ndarray] = []

    @staticmethod
    def relu(x: np.ndarray) -> np.ndarray:
        return np.maximum(x, 0.0)

    @staticmethod
    def relu_derivative(x: np.ndarray) -> np.ndarray:
        return (x > 0).astype(float)

    @staticmethod
    def softmax(values: np.ndarray) -> np.ndarray:
        # Shifting by the max keeps np.exp finite
        shifted = values - np.max(values)
        exp_values = np.exp(shifted)
        return exp_values / np.sum(exp_values)

    @property
    def input_size(self) -> int:
        return self.layer_sizes[0]

    @property
    def output_size(self) -> int:
        return self.layer_sizes[-1]

    def _prepare(self, inputs: Sequence[float]) -> np.ndarray:
        x = np.asarray(inputs, dtype=float).reshape(-1)
        if x.size < self.input_size:
            x = np.concatenate([x, np.zeros(self.input_size - x.size)])
        elif x.size > self.input_size:
            x = x[:self.input_size]
        return np.nan_to_num(x, nan=0.0, posinf=1.0, neginf=-1.0)

    def forward(self, inputs: Sequence[float]) -> np.ndarray:
        """
        Evaluate the network on one feature vector and cache every layer
        for the next gradient step.

        The vector is coerced to float, zero padded or truncated to the
        input width, and NaN/inf entries are replaced before the matmuls.
        """
        current = self._prepare(inputs)
        self._layer_outputs = [current]
        self._layer_inputs = []

        for i in range(self.num_layers - 1):
            layer_input = current @ self.weights[i] + self.biases[i]
            self._layer_inputs.append(layer_input)
            if i < self.num_layers - 2:
                current = self.relu(layer_input)
            elif self.output_activation == "softmax":
                current = self.softmax(layer_input)
            else:
                current = layer_input
            self._layer_outputs.append(current)

        return current

    def apply_output_gradient(self, output_gradient: np.ndarray, max_grad_norm: Optional[float] = None) -> None:
        """Backpropagate dLoss/d(pre-activation output) from the last forward
        pass and take one SGD step."""
        gradients = np.asarray(output_gradient, dtype=float)
        weight_grads: List[np.ndarray] = [None] * (self.num_layers - 1)
        bias_grads: List[np.ndarray] = [None] * (self.num_layers - 1)

        for layer in range(self.num_layers - 2, -1, -1):
            prev_output = self._layer_outputs[layer]
            if layer < self.num_layers - 2:
                gradients = gradients * self.relu_derivative(self._layer_inputs[layer])
            weight_grads[layer] = np.outer(prev_output, gradients)
            bias_grads[layer] = gradients
            gradients = self.weights[layer] @ gradients

        if max_grad_norm is not None:
            total = math.sqrt(sum(float(np.sum(g * g)) for g in weight_grads + bias_grads))
            if total > max_grad_norm > 0:
                factor = max_grad_norm / total
                weight_grads = [g * factor for g in weight_grads]
                bias_grads = [g * factor for g in bias_grads]

        for layer in range(self.num_layers - 1):
            self.weights[layer] -= self.learning_rate * weight_grads[layer]
            self.biases[layer] -= self.learning_rate * bias_grads[layer]

    def backward(self, target: Sequence[float]) -> float:
        """
        Fit the cached forward pass toward ``target`` with one SGD step.

        ``target`` is a distribution for a softmax head or a regression
        vector for a linear head. Returns the cross-entropy or half squared
        error measured before the step.
        """
        output = self._layer_outputs[-1]
        target = np.asarray(target, dtype=float)
        if self.output_activation == "softmax":
            loss = float(-np.sum(target * np.log(np.maximum(output, 1e-10))))
        else:
            loss = float(0.5 * np.sum((output - target) ** 2))
        # Softmax + cross-entropy and linear + MSE share this gradient
        self.apply_output_gradient(output - target)
        return loss

    def train_step(self, inputs: Sequence[float], target: Sequence[float]) -> float:
        """forward then backward on one sample."""
        self.forward(inputs)
        return self.backward(target)

    def to_dict(self) -> dict:
        return {
            'layer_sizes': self.layer_sizes,
            'output_activation': self.output_activation,
            'learning_rate': self.learning_rate,
            'weights': [w.tolist() for w in self.weights],
            'biases': [b.tolist() for b in self.biases],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NeuralNetwork":
        net = cls(
            data['layer_sizes'],
            learning_rate=data.get('learning_rate', 0.001),
            output_activation=data.get('output_activation', 'softmax'),
        )
        net.weights = [np.asarray(w, dtype=float) for w in data['weights']]
        net.biases = [np.asarray(b, dtype=float) for b in data['biases']]
        return net

    def save_weights(self, filepath: str):
        """Write to_dict() as JSON, creating the directory if needed."""
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f)

    def load_weights(self, filepath: str) -> bool:
        """Load weights from JSON file; layer sizes must match."""
        with open(filepath, 'r') as f:
            data = json.load(f)
        if data['layer_sizes'] != self.layer_sizes:
            logger.warning(f"Layer size mismatch loading {filepath}: {data['layer_sizes']} != {self.layer_sizes}")
            return False
        self.weights = [np.asarray(w, dtype=float) for w in data['weights']]
        self.biases = [np.asarray(b, dtype=float) for b in data['biases']]
        return True
