"""
Message template rendering.

Templates use ``{{key}}`` placeholders. Substitution is literal: no
escaping, no whitespace inside the braces, and placeholders without a
matching variable are left as written so operators can spot them.
"""

import re
from collections.abc import Mapping
from typing import Any

_TOKEN = re.compile(r"\{\{([^{}]+)\}\}")


def render(template: str, variables: Mapping[str, Any]) -> str:
    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in variables:
            return match.group(0)
        value = variables[key]
        return "" if value is None else str(value)

    return _TOKEN.sub(_replace, template or "")


def render_optional(template: str | None, variables: Mapping[str, Any]) -> str | None:
    """Like render() but keeps a missing template (e.g. no subject) as None."""
    if template is None:
        return None
    return render(template, variables)
