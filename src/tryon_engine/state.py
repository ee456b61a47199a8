# Job status and quality report definitions
# Plain data structures shared by the engine and the backend service

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional


class JobStatus(str, Enum):
    """Lifecycle of a try-on job: pending -> processing -> completed | failed"""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED.value, JobStatus.FAILED.value})


class Recommendation(str, Enum):
    ACCEPT = "ACCEPT"
    REVIEW = "REVIEW"
    RETRY = "RETRY"
    REJECT = "REJECT"


class IssueKind(str, Enum):
    COLOR_SHIFT = "COLOR_SHIFT"
    STRUCTURE_LOSS = "STRUCTURE_LOSS"
    FACE_MISMATCH = "FACE_MISMATCH"
    OVERALL_QUALITY = "OVERALL_QUALITY"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass(frozen=True)
class RGB:
    r: int
    g: int
    b: int


@dataclass(frozen=True)
class Lab:
    l: float  # noqa: E741
    a: float
    b: float


@dataclass(frozen=True)
class QualityIssue:
    """One detected defect"""

    kind: IssueKind
    severity: Severity
    description: str
    metric_value: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "description": self.description,
            "metric_value": self.metric_value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QualityIssue":
        return cls(
            kind=IssueKind(data["kind"]),
            severity=Severity(data["severity"]),
            description=data.get("description", ""),
            metric_value=data.get("metric_value", 0.0),
        )


@dataclass(frozen=True)
class ColorMetric:
    delta_e: float  # CIE76 distance, rounded to 0.1
    accuracy: int  # 0-100
    garment_color: RGB = field(default_factory=lambda: RGB(128, 128, 128))
    result_color: RGB = field(default_factory=lambda: RGB(128, 128, 128))


@dataclass(frozen=True)
class StructureMetric:
    similarity: float  # luminance proxy, 0-1, rounded to 0.01


@dataclass(frozen=True)
class PersonConsistency:
    """Person-similarity signal supplied by an external face comparison.

    A report built without this signal carries ``None`` instead; the engine
    never substitutes invented values.
    """

    face_similarity: float
    face_detected_original: bool
    face_detected_result: bool
    landmarks_distance: Optional[float] = None


@dataclass(frozen=True)
class QualityReport:
    """Validation outcome for one job. Immutable; re-validation replaces it."""

    overall_score: int
    recommendation: Recommendation
    color_metric: ColorMetric
    structure_metric: StructureMetric
    issues: tuple[QualityIssue, ...] = ()
    person_consistency: Optional[PersonConsistency] = None
    validation_status: str = "failed"  # passed | warning | failed
    grade: str = "FAILED"
    user_message: str = ""
    model_version: str = "rule-based-v1"

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation, used for the job's quality_report column."""
        return {
            "overall_score": self.overall_score,
            "recommendation": self.recommendation.value,
            "color_metric": asdict(self.color_metric),
            "structure_metric": asdict(self.structure_metric),
            "issues": [issue.to_dict() for issue in self.issues],
            "person_consistency": (
                asdict(self.person_consistency) if self.person_consistency else None
            ),
            "validation_status": self.validation_status,
            "grade": self.grade,
            "user_message": self.user_message,
            "model_version": self.model_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QualityReport":
        color = data["color_metric"]
        person = data.get("person_consistency")
        return cls(
            overall_score=data["overall_score"],
            recommendation=Recommendation(data["recommendation"]),
            color_metric=ColorMetric(
                delta_e=color["delta_e"],
                accuracy=color["accuracy"],
                garment_color=RGB(**color.get("garment_color", {"r": 128, "g": 128, "b": 128})),
                result_color=RGB(**color.get("result_color", {"r": 128, "g": 128, "b": 128})),
            ),
            structure_metric=StructureMetric(**data["structure_metric"]),
            issues=tuple(QualityIssue.from_dict(i) for i in data.get("issues", [])),
            person_consistency=PersonConsistency(**person) if person else None,
            validation_status=data.get("validation_status", "failed"),
            grade=data.get("grade", "FAILED"),
            user_message=data.get("user_message", ""),
            model_version=data.get("model_version", "rule-based-v1"),
        )
