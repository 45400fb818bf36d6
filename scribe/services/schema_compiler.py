from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator
from urllib.parse import urldefrag, urljoin

import httpx
from jsonschema import validators
from jsonschema.exceptions import SchemaError
from referencing import Registry, Resource
from referencing.exceptions import Unresolvable
from referencing.jsonschema import DRAFT7

from scribe.core.errors import SchemaCompileError


logger = logging.getLogger(__name__)

_FETCHABLE_SCHEMES = ("http://", "https://")


@dataclass(frozen=True)
class SchemaValidator:
    """Compiled validator for one schema and its preloaded references."""

    schema: dict[str, Any]
    _validator: Any

    def validate(self, instance: Any) -> list[dict[str, Any]]:
        # Report every violated constraint; an empty list means the instance passed.
        try:
            found = sorted(self._validator.iter_errors(instance), key=lambda err: list(err.absolute_path))
        except Unresolvable as exc:
            raise SchemaCompileError(f"Unresolvable schema reference: {exc}") from exc
        return [_format_error(err) for err in found]

    def is_valid(self, instance: Any) -> bool:
        return not self.validate(instance)


def _format_error(err: Any) -> dict[str, Any]:
    instance_path = "".join(f"/{part}" for part in err.absolute_path)
    schema_path = "#" + "".join(f"/{part}" for part in err.absolute_schema_path)
    return {
        "instancePath": instance_path,
        "schemaPath": schema_path,
        "keyword": err.validator,
        "params": {err.validator: err.validator_value} if _is_json_scalar(err.validator_value) else {},
        "message": err.message,
    }


def _is_json_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool, list))


def _iter_refs(node: Any) -> Iterator[str]:
    if isinstance(node, dict):
        ref = node.get("$ref")
        if isinstance(ref, str):
            yield ref
        for value in node.values():
            yield from _iter_refs(value)
    elif isinstance(node, list):
        for item in node:
            yield from _iter_refs(item)


def _external_refs(document: Any, base_uri: str) -> set[str]:
    # Resolve refs against the document base and keep only remote documents.
    found: set[str] = set()
    for ref in _iter_refs(document):
        target = urldefrag(urljoin(base_uri, ref)).url
        if target.startswith(_FETCHABLE_SCHEMES):
            found.add(target)
    return found


async def _fetch_document(http_client: httpx.AsyncClient, uri: str) -> Any:
    try:
        response = await http_client.get(uri)
        response.raise_for_status()
        document = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise SchemaCompileError(f"Loading error: {uri}: {exc}") from exc
    if not isinstance(document, (dict, bool)):
        raise SchemaCompileError(f"Loading error: {uri} did not return a schema")
    return document


async def load_references(schema: dict[str, Any], http_client: httpx.AsyncClient | None) -> Registry:
    """Fetch every remote document reachable through ``$ref`` into a registry."""
    base_uri = schema.get("$id") if isinstance(schema.get("$id"), str) else ""
    root_uri = urldefrag(base_uri).url
    pending = _external_refs(schema, base_uri) - {root_uri}
    loaded: dict[str, Any] = {}
    while pending:
        uri = pending.pop()
        if uri in loaded:
            continue
        if http_client is None:
            raise SchemaCompileError(f"Loading error: no HTTP client to fetch {uri}")
        logger.info("schema_ref_fetch uri=%s", uri)
        document = await _fetch_document(http_client, uri)
        loaded[uri] = document
        pending |= _external_refs(document, uri) - set(loaded) - {root_uri}

    registry: Registry = Registry()
    if loaded:
        registry = registry.with_resources(
            (uri, Resource.from_contents(document, default_specification=DRAFT7))
            for uri, document in loaded.items()
        )
    return registry


async def compile_schema(
    schema: Any,
    http_client: httpx.AsyncClient | None = None,
) -> SchemaValidator:
    """Compile a JSON schema into a validator, preloading external references."""
    if not isinstance(schema, dict):
        raise SchemaCompileError("Schema must be a JSON object")
    validator_cls = validators.validator_for(schema, default=validators.Draft7Validator)
    try:
        validator_cls.check_schema(schema)
    except SchemaError as exc:
        raise SchemaCompileError(f"Invalid schema: {exc.message}") from exc
    registry = await load_references(schema, http_client)
    return SchemaValidator(schema=schema, _validator=validator_cls(schema, registry=registry))
