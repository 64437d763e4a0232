"""Evaluation metrics over batches of prediction scores."""
from __future__ import annotations

import math
import random
import re
from abc import ABC, abstractmethod
from typing import Mapping, Optional, Sequence

import numpy as np

_EPS = np.float32(1e-15)
_ONE = np.float32(1.0)
_RECALL_NAME = re.compile(r"rec@\s*([+-]?\d+)")


class Metric(ABC):
    """Metric that averages a per-instance value over all instances seen."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.clear()

    def clear(self) -> None:
        """Reset the accumulated statistics."""
        self._sum = 0.0
        self._count = 0

    def add_eval(self, predscore, labels) -> None:
        """Add one row of ``predscore`` per instance, matched with ``labels`` rows."""
        preds = np.asarray(predscore, dtype=np.float32)
        labs = np.asarray(labels, dtype=np.float32)
        if preds.ndim != 2 or labs.ndim != 2:
            raise ValueError("Metric: predictions and labels must be 2-D")
        if labs.shape[0] < preds.shape[0]:
            raise ValueError("Metric: fewer label rows than prediction rows")
        for pred, label in zip(preds, labs):
            self._sum += float(self.calc(pred, label))
            self._count += 1

    def get(self) -> float:
        """Current average; NaN before anything was added."""
        if self._count == 0:
            return math.nan
        return self._sum / self._count

    @abstractmethod
    def calc(self, pred, label) -> float:
        """Metric value of a single instance."""


class RMSEMetric(Metric):
    """Sum of squared differences per instance, averaged."""

    def __init__(self) -> None:
        super().__init__("rmse")

    def calc(self, pred, label) -> float:
        pred = np.asarray(pred, dtype=np.float32)
        label = np.asarray(label, dtype=np.float32)
        if pred.shape[0] != label.shape[0]:
            raise ValueError(
                "Metric: In RMSE metric, the size of prediction and label must be same."
            )
        diff = pred - label
        return float(np.sum(diff * diff, dtype=np.float32))


class ErrorMetric(Metric):
    """Classification error of the arg-max prediction."""

    def __init__(self) -> None:
        super().__init__("error")

    def calc(self, pred, label) -> float:
        pred = np.asarray(pred, dtype=np.float32)
        if pred.shape[0] != 1:
            maxidx = int(np.argmax(pred))
        else:
            maxidx = 1 if pred[0] > 0.0 else 0
        return float(maxidx != int(label[0]))


class LoglossMetric(Metric):
    """Negative log likelihood, multi-class or binary."""

    def __init__(self) -> None:
        super().__init__("logloss")

    def calc(self, pred, label) -> float:
        pred = np.asarray(pred, dtype=np.float32)
        hi = _ONE - _EPS
        with np.errstate(divide="ignore", invalid="ignore"):
            if pred.shape[0] != 1:
                target = int(label[0])
                p = np.float32(max(min(pred[target], hi), _EPS))
                return float(-np.log(p))
            py = np.float32(max(min(pred[0], hi), _EPS))
            y = np.float32(label[0])
            res = -(y * np.log(py) + (_ONE - y) * np.log(_ONE - py))
        if math.isnan(res):
            raise ValueError("NaN detected!")
        return float(res)


class RecallMetric(Metric):
    """Fraction of labels found among the top n scores (``rec@n``)."""

    def __init__(self, name: str, seed: Optional[int] = 0) -> None:
        match = _RECALL_NAME.match(name)
        if match is None:
            raise ValueError("must specify n for rec@n")
        self.topn = int(match.group(1))
        self._rng = random.Random(seed)
        super().__init__(name)

    def calc(self, pred, label) -> float:
        scores = np.asarray(pred, dtype=np.float32).tolist()
        if self.topn < 0 or len(scores) < self.topn:
            raise ValueError(
                "it is meaningless to take rec@n for list shorter than n, "
                f"evaluating rec@{self.topn}, list={len(scores)}"
            )
        ranked = list(enumerate(scores))
        # shuffle first so that ties are broken at random
        self._rng.shuffle(ranked)
        ranked.sort(key=lambda entry: entry[1], reverse=True)
        targets = {int(v) for v in label}
        hits = sum(1 for index, _ in ranked[: self.topn] if index in targets)
        return hits / len(label)


def create_metric(name: str) -> Optional[Metric]:
    """Create a metric by name, or return None if the name is unknown."""
    if name == "rmse":
        return RMSEMetric()
    if name == "error":
        return ErrorMetric()
    if name == "logloss":
        return LoglossMetric()
    if name.startswith("rec@"):
        return RecallMetric(name)
    return None


class MetricSet:
    """A list of metrics, each evaluated against a named label field."""

    def __init__(self) -> None:
        self._entries: list[tuple[Metric, str]] = []

    def add_metric(self, name: str, field: str = "label") -> None:
        metric = create_metric(name)
        if metric is None:
            raise ValueError(f"Metric: Unknown metric name: {name}")
        self._entries.append((metric, field))

    def clear(self) -> None:
        for metric, _ in self._entries:
            metric.clear()

    def add_eval(self, predscores: Sequence, labels: Mapping[str, object]) -> None:
        """Add one prediction matrix per metric; ``labels`` maps field name to label rows."""
        if len(predscores) != len(self._entries):
            raise ValueError(
                "Metric: Number of predict scores and number of metrics should be equal."
            )
        for (metric, field), scores in zip(self._entries, predscores):
            if field not in labels:
                raise KeyError(f"Metric: unknown target = {field}")
            metric.add_eval(scores, labels[field])

    def print(self, evname: str) -> str:
        """Render results as ``\\t<evname>-<metric>[field]:<value>`` entries."""
        parts = []
        for metric, field in self._entries:
            suffix = "" if field == "label" else f"[{field}]"
            parts.append(f"\t{evname}-{metric.name}{suffix}:{metric.get():g}")
        return "".join(parts)