from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class SchemaError:
    path: str
    message: str


def json_type_name(v: Any) -> str:
    if v is None:
        return "null"
    if isinstance(v, bool):
        return "boolean"
    if isinstance(v, int):
        return "integer"
    if isinstance(v, float):
        return "number"
    if isinstance(v, str):
        return "string"
    if isinstance(v, list):
        return "array"
    if isinstance(v, dict):
        return "object"
    return type(v).__name__


def _type_matches(actual: str, expected: str) -> bool:
    # JSON Schema: every integer is also a number.
    return actual == expected or (expected == "number" and actual == "integer")


def validate_schema(obj: Any, schema: dict[str, Any], *, path: str) -> list[SchemaError]:
    """Deterministic, stdlib-only validator sufficient for unipack's own schemas.

    Supported keywords:
      - type (string or list)
      - required
      - properties
      - additionalProperties (false, or a schema applied to every extra key)
      - enum
      - pattern
      - minimum
      - minItems
      - items

    Every violation is collected; returns a stable list of SchemaError objects.
    """

    errors: list[SchemaError] = []

    def err(p: str, msg: str) -> None:
        errors.append(SchemaError(path=p, message=msg))

    def walk(cur_obj: Any, sch: Any, cur_path: str) -> None:
        if not isinstance(sch, dict):
            err(cur_path, "schema node is not an object")
            return

        expected_type = sch.get("type")
        if expected_type is not None:
            allowed = [str(x) for x in expected_type] if isinstance(expected_type, list) else [str(expected_type)]
            actual = json_type_name(cur_obj)
            if not any(_type_matches(actual, t) for t in allowed):
                shown = allowed if len(allowed) > 1 else allowed[0]
                err(cur_path, f"expected type {shown}, got {actual}")
                return

        if "enum" in sch:
            enum_vals = sch.get("enum")
            if isinstance(enum_vals, list) and cur_obj not in enum_vals:
                err(cur_path, f"value {cur_obj!r} not in {enum_vals}")
                return

        if isinstance(cur_obj, str):
            patt = sch.get("pattern")
            if isinstance(patt, str) and re.match(patt, cur_obj) is None:
                err(cur_path, "pattern mismatch")

        if isinstance(cur_obj, (int, float)) and not isinstance(cur_obj, bool):
            minimum = sch.get("minimum")
            if minimum is not None and float(cur_obj) < float(minimum):
                err(cur_path, f"minimum {minimum}")

        if isinstance(cur_obj, dict):
            required = sch.get("required")
            if isinstance(required, list):
                for k in required:
                    if k not in cur_obj:
                        err(cur_path, f"missing required '{k}'")

            props = sch.get("properties")
            props = props if isinstance(props, dict) else {}
            # Deterministic iteration
            for k in sorted(props.keys()):
                if k in cur_obj:
                    walk(cur_obj[k], props[k], f"{cur_path}.{k}")

            addl = sch.get("additionalProperties")
            extra = sorted(str(k) for k in cur_obj.keys() if k not in props)
            if addl is False:
                for k in extra:
                    err(f"{cur_path}.{k}", "additionalProperties not allowed")
            elif isinstance(addl, dict):
                for k in extra:
                    walk(cur_obj[k], addl, f"{cur_path}[{k!r}]")

        if isinstance(cur_obj, list):
            min_items = sch.get("minItems")
            if min_items is not None and len(cur_obj) < int(min_items):
                err(cur_path, f"minItems {min_items}")

            item_schema = sch.get("items")
            if isinstance(item_schema, dict):
                for i, item in enumerate(cur_obj):
                    walk(item, item_schema, f"{cur_path}[{i}]")

    walk(obj, schema, path)
    errors.sort(key=lambda e: (e.path, e.message))
    return errors
