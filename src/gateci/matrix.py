# matrix.py
from __future__ import annotations

from itertools import product
from typing import Dict, Tuple

from .errors import ConfigError
from .model import JobInstance, JobSpec


def _excluded(combo: Dict[str, object], exclude: Tuple[Dict[str, object], ...]) -> bool:
    # an exclude entry matches when every key it names agrees with the combo
    return any(
        all(k in combo and combo[k] == v for k, v in entry.items())
        for entry in exclude
    )


def check_axes(spec: JobSpec) -> None:
    for axis, values in spec.matrix.items():
        if not values:
            raise ConfigError(
                f"Job '{spec.name}' declares matrix axis '{axis}' with no values",
                job=spec.name,
            )
    for entry in spec.exclude:
        if not entry:
            # an empty entry would match, and drop, every combination
            raise ConfigError(f"Job '{spec.name}' has an empty matrix exclude entry", job=spec.name)
        unknown = sorted(k for k in entry if k not in spec.matrix)
        if unknown:
            raise ConfigError(
                f"Job '{spec.name}' excludes on unknown matrix axes: {unknown}",
                job=spec.name,
            )


def expand(spec: JobSpec) -> Tuple[JobInstance, ...]:
    """
    Materialize every instance of `spec`.

    Axes are walked in declaration order and values in list order, so the
    same spec always yields the same instance ids in the same order.
    A spec without axes yields exactly one instance.
    """
    check_axes(spec)

    if not spec.matrix:
        return (JobInstance(spec=spec),)

    axes = list(spec.matrix.keys())
    instances = []
    for values in product(*(spec.matrix[a] for a in axes)):
        combo = dict(zip(axes, values))
        if _excluded(combo, spec.exclude):
            continue
        instances.append(JobInstance(spec=spec, params=tuple(zip(axes, values))))

    ids = [i.id for i in instances]
    if len(set(ids)) != len(ids):
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        raise ConfigError(f"Job '{spec.name}' expands to duplicate instances: {dupes}", job=spec.name)

    return tuple(instances)
