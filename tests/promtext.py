# tests/promtext.py
"""Just enough of a Prometheus / OpenMetrics text parser for assertions."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterator, List, Optional, Tuple

LabelSet = FrozenSet[Tuple[str, str]]

_SAMPLE = re.compile(r"^(?P<name>[A-Za-z_:][\w:]*)(?:\{(?P<labels>.*)\})?\s+(?P<value>\S+)(?:\s+\S+)?$")
_LABEL = re.compile(r'(\w+)="((?:[^"\\]|\\.)*)"')
_TYPE = re.compile(r"^# TYPE (\S+) (\S+)$")


@dataclass(frozen=True)
class Sample:
    name: str
    labels: LabelSet
    value: float

    def label(self, key: str) -> Optional[str]:
        return dict(self.labels).get(key)


@dataclass
class Exposition:
    samples: List[Sample] = field(default_factory=list)
    types: List[Tuple[str, str]] = field(default_factory=list)

    def get(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        want = frozenset((labels or {}).items())
        for s in self.samples:
            if s.name == name and s.labels == want:
                return s.value
        return None

    def iter_samples(self, name: str) -> Iterator[Sample]:
        return (s for s in self.samples if s.name == name)

    def names(self) -> List[str]:
        return list(dict.fromkeys(s.name for s in self.samples))

    def families(self) -> List[str]:
        return [name for name, _ in self.types]


def sample_lines(text: str) -> List[str]:
    return [line for line in text.splitlines() if line and not line.startswith("#")]


def parse_exposition(text: str) -> Exposition:
    out = Exposition()
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if line.startswith("#"):
            t = _TYPE.match(line)
            if t:
                name, kind = t.group(1), t.group(2)
                # newer prometheus_client releases keep _total on counter families
                if kind == "counter" and name.endswith("_total"):
                    name = name[: -len("_total")]
                out.types.append((name, kind))
            continue

        m = _SAMPLE.match(line)
        if not m:
            raise ValueError(f"not a sample line: {line!r}")
        labels = frozenset(
            (k, v.replace('\\"', '"').replace("\\\\", "\\"))
            for k, v in _LABEL.findall(m.group("labels") or "")
        )
        out.samples.append(Sample(m.group("name"), labels, float(m.group("value"))))
    return out
