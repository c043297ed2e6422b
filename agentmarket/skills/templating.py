"""
``${a.b.0}`` references in skill step fields.

A field that is exactly one reference evaluates to the referenced value
itself (so ``items: ${inputs.files}`` yields a list). Otherwise every
reference is replaced by its string form.
"""

import re
from typing import Any, Mapping

_REFERENCE = re.compile(r"\$\{([^}]+)\}")


class TemplateError(ValueError):
    """A reference could not be resolved."""

    pass


def lookup(scope: Mapping[str, Any], dotted: str) -> Any:
    """Follow ``dotted`` (``inputs.files.0``) through mappings and lists."""
    current: Any = scope
    for part in dotted.strip().split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.lstrip("-").isdigit():
            index = int(part)
            if not -len(current) <= index < len(current):
                raise TemplateError(f"Index out of range in ${{{dotted}}}")
            current = current[index]
        else:
            raise TemplateError(f"Unresolved reference: ${{{dotted}}}")
    return current


def render_value(template: Any, scope: Mapping[str, Any]) -> Any:
    if not isinstance(template, str):
        return template

    whole = _REFERENCE.fullmatch(template)
    if whole:
        return lookup(scope, whole.group(1))

    return _REFERENCE.sub(lambda m: str(lookup(scope, m.group(1))), template)
