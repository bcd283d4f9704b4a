"""Declarative transformation engine.

A transform spec is either a function ``(data) -> result`` or a mapping from
target property name to a property spec:

- ``True``     copy ``data[target]`` as is; ``False`` leaves the property out
- ``"a.b.c"``  copy the value found at that dot path
- function     called with the whole current data object
- list/tuple   each element resolved against the same target, in order
- mapping      ``{"src", "transform", "iterate", "max"}`` node

Specs are validated and compiled once, when the transformer is created. Each
property spec is classified into a ``SpecKind`` and turned into a coroutine
function, so invoking a transformer never re-inspects spec types. Sibling
properties and list elements are evaluated concurrently with
``asyncio.gather``; the assembled result always keeps spec order.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from enum import StrEnum
from typing import Any

import structlog

from docpipe.asyncutils import maybe_await
from docpipe.errors import SpecError

log = structlog.get_logger()

Resolver = Callable[[Any], Awaitable[Any]]
Transformer = Callable[[Any], Awaitable[Any]]

_VALID_TYPES = "bool | str | function | mapping | list"


class SpecKind(StrEnum):
    BOOLEAN = "boolean"
    STRING = "string"
    FUNCTION = "function"
    ARRAY = "array"
    OBJECT = "object"


def no_transform(raw: Any) -> Any:
    return raw


def spec_kind(prop_spec: Any) -> SpecKind | None:
    """Classify a property spec. Returns ``None`` for unsupported types."""
    if isinstance(prop_spec, bool):
        return SpecKind.BOOLEAN
    if isinstance(prop_spec, str):
        return SpecKind.STRING
    if isinstance(prop_spec, Mapping):
        return SpecKind.OBJECT
    if isinstance(prop_spec, (list, tuple)):
        return SpecKind.ARRAY
    if callable(prop_spec):
        return SpecKind.FUNCTION
    return None


def _is_excluded(prop_spec: Any) -> bool:
    return prop_spec is False


def get_path(data: Any, path: str) -> Any:
    """Look up a dot path such as ``"owner.login"`` or ``"items.0.name"``.

    Mapping keys and non-negative sequence indexes are followed. A missing
    segment anywhere along the way yields ``None``; this never raises. An
    empty path returns ``data`` itself.
    """
    if path == "":
        return data

    current = data
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return None
            current = current[segment]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            try:
                index = int(segment)
            except ValueError:
                return None
            if not 0 <= index < len(current):
                return None
            current = current[index]
        else:
            return None
    return current


def validate_spec(spec: Any) -> None:
    """Check the top-level shape of a transform spec.

    Raises ``SpecError`` naming the offending property and its type.
    """
    if not isinstance(spec, Mapping):
        if callable(spec):
            return
        found = type(spec).__name__
        raise SpecError(
            f"create_transformer accepts only functions or mappings, but found {found}.",
            found_type=found,
        )

    for target_prop, prop_spec in spec.items():
        if spec_kind(prop_spec) is None:
            raise _invalid_property(target_prop, prop_spec)


def _invalid_property(target_prop: Any, prop_spec: Any) -> SpecError:
    found = type(prop_spec).__name__
    return SpecError(
        f"Invalid specification encountered for property {target_prop!r}. "
        f"Must be one of [{_VALID_TYPES}] but found {found}.",
        prop=str(target_prop),
        found_type=found,
    )


# ----------------------------------------------------------------------
# Compilation
# ----------------------------------------------------------------------


async def _call(fn: Callable[[Any], Any], value: Any) -> Any:
    return await maybe_await(fn(value))


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _compile_property(prop_spec: Any, target_prop: str) -> Resolver:
    kind = spec_kind(prop_spec)

    if kind is SpecKind.BOOLEAN:

        async def resolve_flag(data: Any) -> Any:
            return data.get(target_prop) if isinstance(data, Mapping) else None

        return resolve_flag

    if kind is SpecKind.STRING:

        async def resolve_path(data: Any) -> Any:
            return get_path(data, prop_spec)

        return resolve_path

    if kind is SpecKind.FUNCTION:

        async def resolve_call(data: Any) -> Any:
            return await _call(prop_spec, data)

        return resolve_call

    if kind is SpecKind.ARRAY:
        resolvers = [_compile_property(sub_spec, target_prop) for sub_spec in prop_spec]

        async def resolve_each(data: Any) -> list:
            return list(await asyncio.gather(*(resolve(data) for resolve in resolvers)))

        return resolve_each

    if kind is SpecKind.OBJECT:
        return _compile_node(prop_spec, target_prop)

    raise _invalid_property(target_prop, prop_spec)


def _compile_node(node: Mapping[str, Any], target_prop: str) -> Resolver:
    """Compile a ``{src, transform, iterate, max}`` property node."""
    source_prop = node.get("src", target_prop)
    if not isinstance(source_prop, str):
        raise SpecError(
            f"'src' of property {target_prop!r} must be a string, "
            f"but found {type(source_prop).__name__}.",
            prop=target_prop,
            found_type=type(source_prop).__name__,
        )

    transform = node.get("transform", no_transform)
    if isinstance(transform, Mapping):
        apply_transform = create_transformer(transform)
    elif callable(transform):
        apply_transform = transform
    else:
        raise SpecError(
            f"'transform' of property {target_prop!r} must be a function or a mapping, "
            f"but found {type(transform).__name__}.",
            prop=target_prop,
            found_type=type(transform).__name__,
        )

    max_items = node.get("max")
    if max_items is not None and (isinstance(max_items, bool) or not isinstance(max_items, int)):
        raise SpecError(
            f"'max' of property {target_prop!r} must be an integer, "
            f"but found {type(max_items).__name__}.",
            prop=target_prop,
            found_type=type(max_items).__name__,
        )

    if not node.get("iterate"):

        async def resolve_once(data: Any) -> Any:
            return await _call(apply_transform, get_path(data, source_prop))

        return resolve_once

    async def resolve_iterated(data: Any) -> list:
        raw_value = get_path(data, source_prop)
        items = _as_list(raw_value)
        if max_items is not None:
            items = items[:max_items]

        log.debug(
            "spec_iterating",
            target=target_prop,
            src=source_prop,
            count=len(items),
            coerced=raw_value is not None and not isinstance(raw_value, (list, tuple)),
        )
        return list(await asyncio.gather(*(_call(apply_transform, item) for item in items)))

    return resolve_iterated


def _compile_step(spec: Any) -> Transformer:
    """Compile one top-level spec (function or mapping) into an async step."""
    if not isinstance(spec, Mapping):

        async def call_step(data: Any) -> Any:
            return await _call(spec, data)

        return call_step

    properties = [
        (target_prop, _compile_property(prop_spec, target_prop))
        for target_prop, prop_spec in spec.items()
        if not _is_excluded(prop_spec)
    ]

    async def object_step(data: Any) -> dict:
        values = await asyncio.gather(*(resolve(data) for _, resolve in properties))
        return {target_prop: value for (target_prop, _), value in zip(properties, values)}

    return object_step


# ----------------------------------------------------------------------
# Public entry points
# ----------------------------------------------------------------------


def create_transformer(*specs: Any) -> Transformer:
    """Build an async transformer that threads data through ``specs`` in order.

    A mapping spec produces a new dict holding exactly its non-excluded
    target properties; unspecified source properties are dropped.
    """
    for spec in specs:
        validate_spec(spec)
    steps = [_compile_step(spec) for spec in specs]
    log.debug("transformer_created", spec_count=len(specs))

    async def transform(raw_data: Any) -> Any:
        data = raw_data
        for step in steps:
            data = await step(data)
        return data

    return transform


def create_additive_transformer(*specs: Any) -> Transformer:
    """Build an async transformer that overlays each spec's output onto the data.

    Properties untouched by a spec survive; keys marked ``False`` in that
    spec are removed after the merge.
    """
    for spec in specs:
        validate_spec(spec)
    compiled = [
        (
            _compile_step(spec),
            [key for key, value in spec.items() if _is_excluded(value)]
            if isinstance(spec, Mapping)
            else [],
        )
        for spec in specs
    ]
    log.debug("additive_transformer_created", spec_count=len(specs))

    async def transform(raw_data: Any) -> Any:
        data = raw_data
        for step, excluded in compiled:
            transformed = await step(data)
            if not isinstance(data, Mapping) or not isinstance(transformed, Mapping):
                raise TypeError(
                    "Additive transforms merge mappings, but got "
                    f"{type(data).__name__} and {type(transformed).__name__}."
                )
            merged = {**data, **transformed}
            for key in excluded:
                merged.pop(key, None)
            data = merged
        return data

    return transform


async def get_transformed_data(prop_spec: Any, target_prop: str, data: Any) -> Any:
    """Resolve a single property spec against ``data``."""
    resolve = _compile_property(prop_spec, target_prop)
    return await resolve(data)
