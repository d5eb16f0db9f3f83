"""Reversible redaction of sensitive substrings around provider calls.

Analyzers register the literal values they consider sensitive (object
names, namespaces, image references) on each Failure as SensitiveMatch
pairs. Before a prompt leaves the process every ``unmasked`` value is
swapped for its ``masked`` token; the provider's answer gets the reverse
treatment.

Rules are an ordered list. ``mask`` applies them front to back, so a later
rule sees text already rewritten by earlier ones. ``unmask`` applies them
back to front, which makes it the exact inverse of ``mask`` as long as no
masked token occurs in the original text.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Sequence
from typing import Final

from kubediag.models.analysis import Failure, SensitiveMatch

_MASK_PREFIX: Final[str] = "MASKED-"
_MASK_DIGEST_CHARS: Final[int] = 12


def mask_value(value: str) -> str:
    """Return a deterministic mask token for *value*.

    The same value always yields the same token, so anonymized prompts stay
    cacheable across runs.
    """
    digest = hashlib.sha256(value.encode()).hexdigest()
    return f"{_MASK_PREFIX}{digest[:_MASK_DIGEST_CHARS]}"


def sensitive(*values: str) -> list[SensitiveMatch]:
    """Build SensitiveMatch pairs for each non-empty value, dropping duplicates."""
    seen: set[str] = set()
    matches: list[SensitiveMatch] = []
    for value in values:
        if not value or value in seen:
            continue
        seen.add(value)
        matches.append(SensitiveMatch(unmasked=value, masked=mask_value(value)))
    return matches


class Redactor:
    """An ordered list of substitution rules, applied forwards or backwards."""

    def __init__(self, rules: Sequence[SensitiveMatch]) -> None:
        self._rules: tuple[SensitiveMatch, ...] = tuple(r for r in rules if r.unmasked and r.masked)

    @classmethod
    def from_failures(cls, failures: Iterable[Failure]) -> Redactor:
        rules: list[SensitiveMatch] = []
        for failure in failures:
            rules.extend(failure.sensitive)
        return cls(rules)

    @property
    def rules(self) -> tuple[SensitiveMatch, ...]:
        return self._rules

    def mask(self, text: str) -> str:
        for rule in self._rules:
            text = text.replace(rule.unmasked, rule.masked)
        return text

    def unmask(self, text: str) -> str:
        for rule in reversed(self._rules):
            text = text.replace(rule.masked, rule.unmasked)
        return text
