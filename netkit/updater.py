"""Parameter updaters: SGD with momentum and weight-key encoding helpers."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np

DATA_KEY_STEP = 4

_FLOAT_PARAMS = ("learning_rate", "momentum", "wd", "clip_gradient")


def encode_data_key(layer_index: int, tag: str) -> int:
    """Encode a layer index and weight tag into a unique key."""
    if tag == "bias":
        return layer_index * DATA_KEY_STEP + 1
    if tag == "wmat":
        return layer_index * DATA_KEY_STEP
    raise ValueError("EncodeDataKey: only support weight tag: wmat or bias")


def decode_tag(key: int) -> str:
    """Recover the weight tag from a data key."""
    remainder = int(math.fmod(key, DATA_KEY_STEP))
    if remainder == 0:
        return "wmat"
    if remainder == 1:
        return "bias"
    raise ValueError("invalid key")


def clip(values, bound: float) -> np.ndarray:
    """Clip values to [-bound, bound]; NaN becomes 0."""
    arr = np.asarray(values)
    if not np.issubdtype(arr.dtype, np.floating):
        arr = arr.astype(np.float32)
    out = np.where(arr < -bound, -bound, np.where(arr > bound, bound, arr))
    out = np.where(np.isnan(arr), 0.0, out)
    return out.astype(arr.dtype, copy=False)


@dataclass
class UpdaterParam:
    """Hyper-parameters of an updater."""

    tag: str = ""
    learning_rate: float = 0.01
    momentum: float = 0.9
    wd: float = 0.0
    clip_gradient: float = 0.0
    silent: int = 0
    round: int = 0
    epoch: int = 0

    def set_param(self, name: str, val: str) -> None:
        if name in _FLOAT_PARAMS:
            setattr(self, name, float(val))
        elif name == "silent":
            self.silent = int(val)


def _flat2d_shape(shape: tuple[int, ...]) -> tuple[int, int]:
    if not shape:
        return (1, 1)
    return (math.prod(shape[:-1]), shape[-1])


class SGDUpdater:
    """Stochastic gradient descent with momentum, updating ``weight`` in place.

    ``grad`` accumulates gradients; it is reset to zero after each update
    that consumes it.
    """

    def __init__(self, weight: np.ndarray, grad: np.ndarray, tag: str) -> None:
        self.weight = weight
        self.grad = grad
        self.param = UpdaterParam(tag=tag)
        self._velocity: Optional[np.ndarray] = None

    def set_param(self, name: str, val: str) -> None:
        self.param.set_param(name, val)

    def init(self) -> None:
        """Allocate the momentum buffer and report settings unless silent."""
        if self.param.silent == 0:
            print(
                f"SGDUpdater: eta={self.param.learning_rate:f}, "
                f"mom={self.param.momentum:f}"
            )
        self._velocity = np.zeros_like(self.weight)

    def start_round(self, round: int) -> None:
        self.param.round = round

    def update(self, epoch: int, grad: Any = None) -> None:
        """Apply one update, from the accumulated gradient or an explicit 2-D one."""
        if grad is None:
            self._apply(epoch, self.grad)
            self.grad[...] = 0
            return
        grad = np.asarray(grad)
        if grad.shape != _flat2d_shape(self.weight.shape):
            raise ValueError(
                "SGDUpdater: grad must be generated from source of same shape"
            )
        self._apply(epoch, grad.reshape(self.weight.shape))

    def apply_visitor(self, visitor) -> None:
        visitor.visit(self.param.tag, self.weight, self.grad)

    def _apply(self, epoch: int, grad: np.ndarray) -> None:
        if self._velocity is None:
            raise RuntimeError("SGDUpdater: init must be called before update")
        p = self.param
        p.epoch = epoch
        velocity = self._velocity
        velocity *= p.momentum
        g = clip(grad, p.clip_gradient) if p.clip_gradient != 0.0 else grad
        velocity += -p.learning_rate * (g + p.wd * self.weight)
        self.weight += velocity