"""Tolerant ``key=value`` parsing for options forwarded to the engines."""

from __future__ import annotations

from typing import Iterable, Sequence


def parse_key_value_args(tokens: Sequence[str] | None) -> dict[str, str]:
    """Turn a flat token list into an ordered ``{key: value}`` mapping.

    Accepted forms are ``key=value`` (split on the first ``=``), ``key value``
    and a bare ``key`` which becomes the flag value ``"true"``. A repeated key
    keeps its first position and takes the last value. Never raises.
    """
    parsed: dict[str, str] = {}
    if not tokens:
        return parsed

    items = [str(token) for token in tokens]
    index = 0
    while index < len(items):
        token = items[index]
        if "=" in token:
            key, value = token.split("=", 1)
            parsed[key] = value
            index += 1
            continue

        value = "true"
        if index + 1 < len(items):
            candidate = items[index + 1]
            if not candidate.startswith("-") and "=" not in candidate:
                value = candidate
                index += 1
        parsed[token] = value
        index += 1
    return parsed


def split_key_value_option(raw_items: Iterable[str] | None) -> dict[str, str]:
    """Parse repeated ``--surveyor-args a=1,b=2`` style values."""
    if not raw_items:
        return {}
    tokens: list[str] = []
    for item in raw_items:
        for piece in str(item).split(","):
            piece = piece.strip()
            if piece:
                tokens.append(piece)
    return parse_key_value_args(tokens)
