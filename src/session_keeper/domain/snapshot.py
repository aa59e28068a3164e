"""Merge de snapshots: um campo conhecido nunca regride para vazio."""

from __future__ import annotations

from typing import Any


def is_empty_value(value: Any) -> bool:
    """None, string vazia e coleções vazias contam como "sem informação"."""

    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def merge_snapshot(previous: dict[str, Any] | None, new: dict[str, Any]) -> dict[str, Any]:
    """Mescla o novo payload sobre o anterior.

    - Chaves ausentes em new são preservadas
    - Valores vazios em new mantêm o valor anterior
    - Dicts aninhados são mesclados recursivamente
    """
    if not previous:
        return dict(new)

    merged: dict[str, Any] = dict(previous)
    for key, value in new.items():
        old = previous.get(key)
        if isinstance(value, dict) and isinstance(old, dict):
            merged[key] = merge_snapshot(old, value)
        elif is_empty_value(value) and not is_empty_value(old):
            continue
        else:
            merged[key] = value
    return merged
