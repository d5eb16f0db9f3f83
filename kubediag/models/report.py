"""Pydantic models for the final analysis report.

All models use Pydantic v2 syntax. ``AnalysisReport.model_dump_json()`` is
the ``--output json`` format of the CLI.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from kubediag.models.analysis import AnalysisResult, AnalysisStats, AnalysisStatus


class SensitiveSchema(BaseModel):
    unmasked: str
    masked: str


class FailureSchema(BaseModel):
    text: str
    sensitive: list[SensitiveSchema] = Field(default_factory=list)


class ResultSchema(BaseModel):
    kind: str
    name: str = ""
    error: list[FailureSchema] = Field(default_factory=list)
    details: str = ""
    parent_object: str = Field(default="", serialization_alias="parentObject")

    @classmethod
    def from_result(cls, result: AnalysisResult) -> ResultSchema:
        return cls(
            kind=result.kind,
            name=result.name,
            error=[
                FailureSchema(
                    text=f.text,
                    sensitive=[SensitiveSchema(unmasked=s.unmasked, masked=s.masked) for s in f.sensitive],
                )
                for f in result.failures
            ],
            details=result.details,
            parent_object=result.parent_object,
        )


class StatSchema(BaseModel):
    analyzer: str
    duration_seconds: float


class AnalysisReport(BaseModel):
    """Everything a run produced: results, error strings, and optional stats."""

    provider: str = ""
    errors: list[str] = Field(default_factory=list)
    status: AnalysisStatus = AnalysisStatus.OK
    problems: int = 0
    results: list[ResultSchema] = Field(default_factory=list)
    stats: list[StatSchema] = Field(default_factory=list)

    @classmethod
    def build(
        cls,
        results: list[AnalysisResult],
        errors: list[str],
        stats: list[AnalysisStats],
        provider: str = "",
    ) -> AnalysisReport:
        """Assemble a report; status is ProblemDetected iff any failure exists."""
        problems = sum(len(r.failures) for r in results)
        return cls(
            provider=provider,
            errors=list(errors),
            status=AnalysisStatus.PROBLEM_DETECTED if problems else AnalysisStatus.OK,
            problems=problems,
            results=[ResultSchema.from_result(r) for r in results],
            stats=[StatSchema(analyzer=s.analyzer, duration_seconds=s.duration_seconds) for s in stats],
        )
