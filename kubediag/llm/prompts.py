"""Prompt templates for failure explanations.

Templates are ``str.format`` strings with two fields: ``{language}`` and
``{failures}`` (the space-joined failure texts). Literal braces must be
doubled. A template registered under a result kind replaces ``default``
for results of that kind.

Custom REST backends receive the rendered prompt wrapped in a JSON
envelope (the reserved ``raw`` entry) so the backend can see the
language and failure text separately.
"""

from __future__ import annotations

import json
import string
from collections.abc import Mapping

from kubediag.errors import ProviderConfigError

DEFAULT_PROMPT = """Simplify the following Kubernetes error message delimited by triple dashes written in --- {language} --- language; --- {failures} ---.
Provide the most possible solution in a step by step style in no more than 280 characters. Write the output in the following format:
Error: {{Explain error here}}
Solution: {{Step by step solution here}}
"""

NODE_PROMPT = """You are looking at a Kubernetes node condition report delimited by triple dashes. Answer in --- {language} --- language; --- {failures} ---.
Explain what the condition means for workloads scheduled on this node and give the most likely remediation in no more than 280 characters. Write the output in the following format:
Error: {{Explain error here}}
Solution: {{Step by step solution here}}
"""

# Reserved key; never overridable from configuration.
RAW_PROMPT_KEY = "raw"

TEMPLATE_FIELDS: frozenset[str] = frozenset({"language", "failures"})

PROMPTS: dict[str, str] = {
    "default": DEFAULT_PROMPT,
    "Node": NODE_PROMPT,
}


def check_template(kind: str, template: str) -> None:
    """Raise ProviderConfigError unless *template* only uses the known fields."""
    try:
        fields = [name for _, name, _, _ in string.Formatter().parse(template) if name is not None]
    except ValueError as exc:
        raise ProviderConfigError(f"prompt for {kind!r} is not a valid template: {exc}") from exc
    unknown = sorted(set(fields) - TEMPLATE_FIELDS)
    if unknown:
        raise ProviderConfigError(
            f"prompt for {kind!r} uses unknown field(s) {', '.join(repr(f) for f in unknown)}; "
            "only {language} and {failures} are allowed, double literal braces as {{ and }}"
        )


def build_prompt_map(overrides: Mapping[str, str] | None = None) -> dict[str, str]:
    """Merge user prompt overrides onto the built-in templates.

    Raises ProviderConfigError for an override that would not render.
    """
    prompts = dict(PROMPTS)
    for kind, template in (overrides or {}).items():
        if kind == RAW_PROMPT_KEY:
            continue
        check_template(kind, template)
        prompts[kind] = template
    return prompts


def render_prompt(prompts: Mapping[str, str], kind: str, language: str, failures: str) -> str:
    template = prompts.get(kind) or prompts.get("default") or DEFAULT_PROMPT
    return template.strip().format(language=language, failures=failures)


def render_raw_prompt(language: str, failures: str, prompt: str) -> str:
    """Wrap a rendered prompt in the JSON envelope sent to custom REST backends."""
    return json.dumps({"language": language, "message": failures, "prompt": prompt})
