"""
Placeholder substitution.

Resolved values are bound into the template body by placeholder name.
Rendering is deterministic: Jinja2 with ``StrictUndefined``, so a
template that references an undeclared name fails instead of silently
producing an empty string.

The name ``document`` is reserved for engine-generated metadata
(template id, version, scope, request coordinates). Placeholders can
never shadow it.

Placeholders with a selected display format are bound as formatted
strings. Templates can also format inline with the ``fmt`` filter:
``{{ issued_at | fmt("D MMMM YYYY") }}``.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from jinja2 import Environment, StrictUndefined, Template, TemplateError

from renderer.app.errors import DocumentRenderError
from renderer.app.injection.formatting import format_value
from renderer.app.injection.values import InjectableValue, InjectionKey
from renderer.app.templates.models import TemplateDefinition

DOCUMENT_BINDING = "document"


class TemplateSubstitution:
    def __init__(
        self,
        *,
        jinja_options: Optional[Mapping[str, Any]] = None,
        filters: Optional[Mapping[str, Callable[..., Any]]] = None,
        max_compiled: int = 256,
    ) -> None:
        self._env = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
            **dict(jinja_options or {}),
        )
        self._env.filters["fmt"] = format_value
        self._env.filters.update(filters or {})
        self._compiled: "OrderedDict[Tuple[str, int], Template]" = OrderedDict()
        self._max_compiled = max_compiled
        self._lock = threading.Lock()

    def _compile(self, template: TemplateDefinition) -> Template:
        key = template.cache_key
        with self._lock:
            compiled = self._compiled.get(key)
            if compiled is not None:
                self._compiled.move_to_end(key)
                return compiled

        compiled = self._env.from_string(template.body)

        with self._lock:
            self._compiled[key] = compiled
            while len(self._compiled) > self._max_compiled:
                self._compiled.popitem(last=False)
        return compiled

    def render(
        self,
        template: TemplateDefinition,
        values: Mapping[InjectionKey, InjectableValue],
        document: Mapping[str, Any],
        formats: Optional[Mapping[InjectionKey, str]] = None,
    ) -> str:
        """
        Substitute ``values`` into ``template``.

        Every declared placeholder must have a resolved value. Values
        with an entry in ``formats`` are bound formatted.
        """
        formats = formats or {}
        render_context: Dict[str, Any] = {}
        for key in template.placeholders:
            value = values.get(key)
            if value is None:
                raise DocumentRenderError(f"No value resolved for '{key}'")
            pattern = formats.get(key)
            if pattern is None:
                render_context[key.name] = value.value
                continue
            try:
                render_context[key.name] = format_value(value.value, pattern)
            except (TypeError, ValueError) as exc:
                raise DocumentRenderError(
                    f"Cannot format '{key}' as '{pattern}': {exc}"
                ) from exc

        render_context[DOCUMENT_BINDING] = dict(document)

        try:
            return self._compile(template).render(render_context)
        except (TemplateError, TypeError, ValueError) as exc:
            raise DocumentRenderError(
                f"Template '{template.id}' v{template.version} failed to "
                f"render: {exc}"
            ) from exc
