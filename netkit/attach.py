"""Iterator that attaches per-instance extra data read from a text file."""
from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any, Optional

import numpy as np

from .batching import DataBatch


def _parse_int(token: str) -> Optional[int]:
    try:
        return int(token)
    except ValueError:
        return None


class AttachTxtIterator:
    """Wraps a batch iterator and adds one extra (batch, 1, 1, dim) tensor per batch.

    The text file starts with ``dim``, followed by records of an instance
    index and ``dim`` values. Rows of the batch whose instance index has no
    record keep the values they held before.
    """

    def __init__(self, base: Any) -> None:
        self.base = base
        self.filename = ""
        self.batch_size = 0
        self.round_batch = 0
        self.dim = 0
        self._id_map: dict[int, int] = {}
        self._all_data = np.zeros((0, 0), dtype=np.float32)
        self._extra = np.zeros((0, 1, 1, 0), dtype=np.float32)
        self._out: Optional[DataBatch] = None

    def set_param(self, name: str, val: str) -> None:
        self.base.set_param(name, val)
        if name == "filename":
            self.filename = val
        elif name == "batch_size":
            self.batch_size = int(val)
        elif name == "round_batch":
            self.round_batch = int(val)

    def init(self) -> None:
        self.base.init()
        try:
            tokens = Path(self.filename).read_text().split()
        except OSError:
            raise FileNotFoundError(f"AttachTxt: Open file failed: {self.filename}") from None
        dim = _parse_int(tokens[0]) if tokens else None
        if dim is None:
            raise ValueError("AttachTxt: First line should indicate the data dim.")
        self.dim = dim
        self._extra = np.zeros((self.batch_size, 1, 1, dim), dtype=np.float32)
        rows: list[list[float]] = []
        self._id_map = {}
        pos = 1
        while pos < len(tokens):
            data_id = _parse_int(tokens[pos])
            if data_id is None:
                break
            values = tokens[pos + 1:pos + 1 + dim]
            try:
                if len(values) != dim:
                    raise ValueError
                rows.append([float(v) for v in values])
            except ValueError:
                raise ValueError("AttachTxt: data do not match dimension specified") from None
            self._id_map[data_id] = len(rows) - 1
            pos += 1 + dim
        self._all_data = np.asarray(rows, dtype=np.float32).reshape(len(rows), dim)

    def before_first(self) -> None:
        self.base.before_first()

    def next(self) -> bool:
        if not self.base.next():
            return False
        batch = self.base.value()
        self._out = dataclasses.replace(batch, extra_data=[self._extra])
        for top in range(self.batch_size):
            row = self._id_map.get(int(batch.inst_index[top]))
            if row is not None:
                self._extra[top, 0, 0, :] = self._all_data[row]
        return True

    def value(self) -> DataBatch:
        if self._out is None:
            raise RuntimeError("must call Next to get value")
        return self._out