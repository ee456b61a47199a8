# Rule-based quality validation for try-on results
# Layer 1: garment consistency (colour + luminance structure), no ML needed
# Layer 2: optional person-similarity blend supplied by an external checker

from dataclasses import dataclass
from typing import Optional, Sequence

from tryon_engine.color import (
    clamp,
    delta_e,
    mean_color,
    mean_luminance,
    round_half_up,
)
from tryon_engine.imaging import DEFAULT_SAMPLE_PIXELS
from tryon_engine.state import (
    RGB,
    ColorMetric,
    IssueKind,
    PersonConsistency,
    QualityIssue,
    QualityReport,
    Recommendation,
    Severity,
    StructureMetric,
)

Pixels = Sequence[Sequence[int]]

MODEL_VERSION = "rule-based-v1"


@dataclass(frozen=True)
class ValidationConfig:
    """Calibration constants for the scoring rules.

    None of these are derived from first principles; they are the values the
    scoring has been tuned with and can be swapped out wholesale.
    """

    sample_pixels: int = DEFAULT_SAMPLE_PIXELS

    # Colour accuracy = 100 - dE * multiplier
    delta_e_multiplier: float = 3.0

    # Composite weights
    color_weight: float = 0.6
    structure_weight: float = 0.4
    person_weight: float = 0.25
    garment_weight: float = 0.75

    # Issue thresholds
    color_shift_delta_e: float = 15.0
    color_shift_high_delta_e: float = 25.0
    structure_loss_similarity: float = 0.65
    structure_loss_high_similarity: float = 0.50
    face_mismatch_similarity: float = 0.75
    face_mismatch_high_similarity: float = 0.6

    # Recommendation bands (score >= band)
    accept_score: int = 85
    review_score: int = 70
    retry_score: int = 50

    # Hard REJECT overrides (person signal present)
    reject_person_similarity: float = 0.5
    reject_delta_e: float = 30.0

    # Fixed penalties (person signal present)
    no_face_penalty: int = 30
    low_person_similarity: float = 0.7
    low_person_penalty: int = 15
    color_penalty_delta_e: float = 20.0
    color_penalty: int = 20
    structure_penalty_similarity: float = 0.6
    structure_penalty: int = 15


DEFAULT_VALIDATION_CONFIG = ValidationConfig()


def _to_int_score(value: float) -> int:
    return int(round_half_up(clamp(value, 0, 100)))


class QualityValidator:
    """Scores a generated try-on image against its garment reference.

    Stateless: every method is a pure function of its arguments and the
    config the validator was built with.
    """

    def __init__(self, config: ValidationConfig = DEFAULT_VALIDATION_CONFIG) -> None:
        self.config = config

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def color_metric(self, garment_color: RGB, result_color: RGB) -> ColorMetric:
        d = delta_e(garment_color, result_color)
        accuracy = _to_int_score(100 - d * self.config.delta_e_multiplier)
        return ColorMetric(
            delta_e=d,
            accuracy=accuracy,
            garment_color=garment_color,
            result_color=result_color,
        )

    def structure_metric(self, garment_luminance: float, result_luminance: float) -> StructureMetric:
        diff = abs(garment_luminance - result_luminance)
        similarity = clamp(1 - diff / 255, 0.0, 1.0)
        return StructureMetric(similarity=round_half_up(similarity, 2))

    def composite_score(self, color_accuracy: int, similarity: float) -> int:
        score = (
            color_accuracy * self.config.color_weight
            + similarity * 100 * self.config.structure_weight
        )
        return _to_int_score(score)

    # ------------------------------------------------------------------
    # Issues and recommendation
    # ------------------------------------------------------------------

    def detect_issues(self, color: ColorMetric, structure: StructureMetric) -> list[QualityIssue]:
        cfg = self.config
        issues: list[QualityIssue] = []

        color_shift = color.delta_e > cfg.color_shift_delta_e
        structure_loss = structure.similarity < cfg.structure_loss_similarity

        if color_shift:
            issues.append(
                QualityIssue(
                    kind=IssueKind.COLOR_SHIFT,
                    severity=(
                        Severity.HIGH
                        if color.delta_e > cfg.color_shift_high_delta_e
                        else Severity.MEDIUM
                    ),
                    description=f"Garment colour shifted (dE={color.delta_e:.1f})",
                    metric_value=color.delta_e,
                )
            )

        if structure_loss:
            issues.append(
                QualityIssue(
                    kind=IssueKind.STRUCTURE_LOSS,
                    severity=(
                        Severity.HIGH
                        if structure.similarity < cfg.structure_loss_high_similarity
                        else Severity.MEDIUM
                    ),
                    description=(
                        f"Texture detail poorly preserved ({structure.similarity * 100:.0f}%)"
                    ),
                    metric_value=structure.similarity,
                )
            )

        if color_shift and structure_loss:
            issues.append(
                QualityIssue(
                    kind=IssueKind.OVERALL_QUALITY,
                    severity=Severity.HIGH,
                    description="Overall quality is poor, a new try-on is recommended",
                    metric_value=0.0,
                )
            )

        return issues

    def person_issues(self, person: PersonConsistency) -> tuple[list[QualityIssue], list[QualityIssue]]:
        """Return (issues to prepend, issues to append) for the person signal."""
        cfg = self.config
        leading: list[QualityIssue] = []
        trailing: list[QualityIssue] = []

        if not person.face_detected_result:
            leading.append(
                QualityIssue(
                    kind=IssueKind.FACE_MISMATCH,
                    severity=Severity.HIGH,
                    description="No face detected in the result image",
                )
            )
        if not person.face_detected_original:
            leading.append(
                QualityIssue(
                    kind=IssueKind.FACE_MISMATCH,
                    severity=Severity.HIGH,
                    description="No face detected in the source photo, use a front-facing photo",
                )
            )

        if (
            person.face_detected_original
            and person.face_detected_result
            and person.face_similarity < cfg.face_mismatch_similarity
        ):
            trailing.append(
                QualityIssue(
                    kind=IssueKind.FACE_MISMATCH,
                    severity=(
                        Severity.HIGH
                        if person.face_similarity < cfg.face_mismatch_high_similarity
                        else Severity.MEDIUM
                    ),
                    description=(
                        f"Person features poorly preserved ({person.face_similarity * 100:.0f}%)"
                    ),
                    metric_value=person.face_similarity,
                )
            )

        return leading, trailing

    def recommend(self, score: int) -> Recommendation:
        cfg = self.config
        if score >= cfg.accept_score:
            return Recommendation.ACCEPT
        if score >= cfg.review_score:
            return Recommendation.REVIEW
        if score >= cfg.retry_score:
            return Recommendation.RETRY
        return Recommendation.REJECT

    def blend_person(
        self,
        garment_score: int,
        person: PersonConsistency,
        color: ColorMetric,
        structure: StructureMetric,
    ) -> int:
        """Blend the person signal into the garment composite and apply penalties."""
        cfg = self.config
        blended = (
            person.face_similarity * 100 * cfg.person_weight
            + garment_score * cfg.garment_weight
        )

        penalty = 0
        if not person.face_detected_result:
            penalty += cfg.no_face_penalty
        elif person.face_similarity < cfg.low_person_similarity:
            penalty += cfg.low_person_penalty
        if color.delta_e > cfg.color_penalty_delta_e:
            penalty += cfg.color_penalty
        if structure.similarity < cfg.structure_penalty_similarity:
            penalty += cfg.structure_penalty

        return _to_int_score(blended - penalty)

    def is_unrecoverable(self, person: PersonConsistency, color: ColorMetric) -> bool:
        cfg = self.config
        return (
            not person.face_detected_result
            or person.face_similarity < cfg.reject_person_similarity
            or color.delta_e > cfg.reject_delta_e
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def assess(
        self,
        garment_pixels: Pixels,
        result_pixels: Pixels,
        person: Optional[PersonConsistency] = None,
    ) -> QualityReport:
        """Build a QualityReport from sampled garment and result pixels."""
        limit = self.config.sample_pixels
        garment_sample = list(garment_pixels)[:limit]
        result_sample = list(result_pixels)[:limit]

        color = self.color_metric(mean_color(garment_sample), mean_color(result_sample))
        structure = self.structure_metric(
            mean_luminance(garment_sample), mean_luminance(result_sample)
        )
        score = self.composite_score(color.accuracy, structure.similarity)
        issues = self.detect_issues(color, structure)

        if person is None:
            recommendation = self.recommend(score)
        else:
            score = self.blend_person(score, person, color, structure)
            leading, trailing = self.person_issues(person)
            issues = leading + issues + trailing
            if self.is_unrecoverable(person, color):
                recommendation = Recommendation.REJECT
            else:
                recommendation = self.recommend(score)

        return QualityReport(
            overall_score=score,
            recommendation=recommendation,
            color_metric=color,
            structure_metric=structure,
            issues=tuple(issues),
            person_consistency=person,
            validation_status=validation_status(score),
            grade=quality_grade(score),
            user_message=user_message(score),
            model_version=MODEL_VERSION,
        )


# ===== Presentation helpers =====


def validation_status(score: int) -> str:
    if score >= 85:
        return "passed"
    if score >= 70:
        return "warning"
    return "failed"


def quality_grade(score: Optional[int]) -> str:
    if score is None:
        return "PENDING"
    if score >= 90:
        return "EXCELLENT"
    if score >= 80:
        return "GOOD"
    if score >= 70:
        return "FAIR"
    if score >= 60:
        return "POOR"
    return "FAILED"


def user_message(score: int) -> str:
    if score >= 90:
        return "Excellent! The person and the garment are both faithfully preserved."
    if score >= 85:
        return "Great result with details preserved."
    if score >= 75:
        return "Good overall, check the details before deciding."
    if score >= 65:
        return "Average result, a new try-on may look better."
    if score >= 50:
        return "Weak result, try again with a better quality photo."
    return "The try-on did not meet the quality bar, check the photo or pick another garment."
