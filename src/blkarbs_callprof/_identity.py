"""Callable identity: stable aggregation keys derived from a callable's static shape.

Two closures created by the same ``def`` or ``lambda`` share one identity, no
matter which values they captured. Callers who need a per-instance breakdown
must instrument distinct definition sites.
"""

import functools
import hashlib
import inspect
from collections.abc import Callable
from typing import Any

from beartype import beartype

IDENTITY_BITS = 64


def _static_target(func: Any) -> Any:
    """Strip the runtime layers that do not change a callable's shape."""
    while True:
        if isinstance(func, functools.partial):
            func = func.func
        elif inspect.ismethod(func):
            func = func.__func__
        elif hasattr(func, "__wrapped__"):
            try:
                func = inspect.unwrap(func)
            except ValueError:
                # __wrapped__ cycle: the outermost object is the shape.
                return func
        else:
            return func


def _code_descriptor(code: Any) -> str:
    """First line, start column, bytecode and constants of a code object."""
    positions = getattr(code, "co_positions", None)
    column = next(iter(positions()), (None,) * 4)[2] if positions is not None else None
    consts = tuple(
        f"<code {c.co_name}:{c.co_firstlineno}>" if inspect.iscode(c) else repr(c)
        for c in code.co_consts
    )
    return f"{code.co_filename}:{code.co_firstlineno}:{column}:{code.co_code.hex()}:{consts}"


def _shape_descriptor(func: Any) -> str:
    target = _static_target(func)
    code = getattr(target, "__code__", None)
    if code is not None:
        module = getattr(target, "__module__", None) or "<unknown>"
        qualname = getattr(target, "__qualname__", code.co_name)
        return f"code:{module}:{qualname}:{_code_descriptor(code)}"

    if inspect.isroutine(target) or inspect.isclass(target):
        module = getattr(target, "__module__", None)
        if module is None:
            owner = getattr(target, "__objclass__", None) or getattr(target, "__self__", None)
            if owner is not None and not inspect.isclass(owner):
                owner = type(owner)
            module = getattr(owner, "__module__", None) or "builtins"
        qualname = getattr(target, "__qualname__", None) or getattr(target, "__name__", "")
        return f"named:{module}:{qualname}"

    cls = type(target)
    return f"type:{cls.__module__}:{cls.__qualname__}"


@beartype
def callable_identity(func: Callable[..., Any]) -> int:
    """Return the 64-bit identity of ``func``'s static shape.

    Deterministic within a process run. Distinct shapes collide only with
    probability bounded by the digest width.
    """
    if hasattr(func, "__profiler_identity__"):
        return func.__profiler_identity__

    digest = hashlib.blake2b(
        _shape_descriptor(func).encode("utf-8"),
        digest_size=IDENTITY_BITS // 8,
    ).digest()
    return int.from_bytes(digest, "big")


@beartype
def callable_name(func: Callable[..., Any]) -> tuple[str, str]:
    """Return ``(name, module)`` used to label a callable in reports."""
    target = _static_target(func)
    if not (inspect.isroutine(target) or inspect.isclass(target)):
        target = type(target)
    name = getattr(target, "__qualname__", None) or getattr(target, "__name__", repr(target))
    module = getattr(target, "__module__", None) or type(target).__module__
    return name, module
