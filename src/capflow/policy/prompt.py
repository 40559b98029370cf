# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Jinja2-based prompt rendering for template classification.

This module provides the TemplateRenderer class and the prompt sent to the
external classifier when choosing a workflow template.
"""

from __future__ import annotations

import json
import re
from typing import Any

from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateSyntaxError
from jinja2 import UndefinedError as Jinja2UndefinedError

from capflow.exceptions import TemplateError

CLASSIFIER_PROMPT = """\
Analyze this product management objective and recommend the most appropriate workflow template.

OBJECTIVE: {{ objective }}

CONSTRAINTS:
{{ constraints | json }}

PREFERENCES:
{{ preferences | json }}

AVAILABLE TEMPLATES:
{% for key, description in templates.items() -%}
- {{ key }}: {{ description }}
{% endfor %}
Consider:
1. Complexity and depth required
2. Time and cost constraints
3. Quality requirements
4. Risk tolerance

Respond with just the template key that best matches the requirements.
"""


class TemplateRenderer:
    """Jinja2-based template renderer.

    Uses StrictUndefined to fail fast on missing variables and provides a
    ``json`` filter for embedding structured values.

    Example:
        >>> renderer = TemplateRenderer()
        >>> renderer.render("Hello {{ name }}!", {"name": "World"})
        'Hello World!'
    """

    def __init__(self) -> None:
        """Initialize the template renderer with Jinja2 environment."""
        self.env = Environment(
            loader=BaseLoader(),
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        self.env.filters["json"] = self._json_filter

    @staticmethod
    def _json_filter(value: Any, indent: int = 2) -> str:
        """Serialize value to formatted JSON string."""
        return json.dumps(value, indent=indent, default=str)

    def render(self, template: str, context: dict[str, Any]) -> str:
        """Render a template string with the given context.

        Raises:
            TemplateError: If rendering fails due to missing variables or syntax errors.
        """
        try:
            return self.env.from_string(template).render(**context)
        except Jinja2UndefinedError as e:
            match = re.search(r"'([^']+)' is undefined", str(e))
            raise TemplateError(
                f"Undefined variable in template: {e}",
                undefined_variable=match.group(1) if match else None,
            ) from e
        except TemplateSyntaxError as e:
            raise TemplateError(f"Template syntax error: {e}", line_number=e.lineno) from e
