"""jq queries over command output (JSON-query evaluator wrapper).

Refer to https://jqlang.github.io/jq/manual/ for the supported syntax.
"""

from __future__ import annotations

import json
from typing import Any

import jq as _jq

from .errors import JQError
from .transforms import LineMap, Sink

__all__ = ["build_jq", "exec_jq", "map_jq"]

_decoder = json.JSONDecoder()


def build_jq(query: str) -> Any:
    """Compile a jq query.

    Raises:
        JQError: If the query does not compile
    """
    try:
        return _jq.compile(query)
    except ValueError as e:
        raise JQError(f"jq.compile: {e}") from e


def _marshal(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False).encode(
        "utf-8"
    )


def exec_jq(program: Any, content: bytes) -> bytes:
    """Evaluate a compiled query against the first JSON value in content.

    Results are encoded as compact JSON and concatenated. Empty content
    yields b"".

    Raises:
        JQError: If content is not JSON or evaluation fails
    """
    text = content.decode("utf-8", errors="replace").strip()
    if not text:
        return b""

    try:
        value, _ = _decoder.raw_decode(text)
    except json.JSONDecodeError as e:
        raise JQError(f"json: {e}: {text}") from e

    try:
        results = program.input_value(value).all()
    except ValueError as e:
        raise JQError(f"jq: {e}: {text}") from e

    return b"".join(_marshal(result) for result in results)


def map_jq(query: str) -> LineMap:
    """Create a LineMap that replaces each line with the query result.

    Raises:
        JQError: If the query does not compile
    """
    program = build_jq(query)

    def _map(line: bytes, dst: Sink) -> None:
        dst.write(exec_jq(program, line))

    return _map
