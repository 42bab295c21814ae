"""
Experiment data models for the experimentation engine.

Dataclass schemas for experiment configuration, assignments, running metric
state, per-arm tallies, and analysis results.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class ExperimentType(str, Enum):
    """Experiment design."""
    AB = "ab"
    MULTIVARIATE = "multivariate"
    BANDIT = "bandit"
    FACTORIAL = "factorial"


class ExperimentStatus(str, Enum):
    """Lifecycle state."""
    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ExperimentStatus.COMPLETED, ExperimentStatus.CANCELLED)


class RuleOperator(str, Enum):
    EQUALS = "equals"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


class GuardrailDirection(str, Enum):
    ABOVE = "above"
    BELOW = "below"


class GuardrailAction(str, Enum):
    ALERT = "alert"
    PAUSE = "pause"
    STOP = "stop"


class MultipleTestingCorrection(str, Enum):
    BONFERRONI = "bonferroni"
    FDR = "fdr"
    NONE = "none"


class ApprovalGate(str, Enum):
    """Review gates that must be passed before an experiment can start."""
    CULTURAL_APPROVAL = "cultural_approval"
    NEUROSCIENCE_VALIDATION = "neuroscience_validation"
    ETHICS_REVIEW = "ethics_review"


@dataclass
class AudienceRule:
    """Predicate over one field of the participant context."""
    field: str
    operator: RuleOperator
    value: Any = None


@dataclass
class AudienceConfig:
    include_rules: List[AudienceRule] = field(default_factory=list)
    exclude_rules: List[AudienceRule] = field(default_factory=list)
    sample_size: int = 1000


@dataclass
class Variant:
    """One treatment arm."""
    variant_id: str
    name: str = ""
    weight: float = 0.0  # 0-100
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TrafficAllocation:
    variant_id: str
    percentage: float
    conditions: List[AudienceRule] = field(default_factory=list)


@dataclass(frozen=True)
class AllocationRange:
    """Hash range owned by a variant, frozen when the experiment starts."""
    variant_id: str
    lower: float
    upper: float
    conditions: Tuple[AudienceRule, ...] = ()


@dataclass
class CulturalCustomization:
    element: str  # ui, content, interaction, assessment, feedback
    adaptations: List[str] = field(default_factory=list)
    validation_required: bool = False


@dataclass
class CulturalSegment:
    segment_id: str
    name: str
    culture: str  # "other" matches any participant
    language: str = ""
    customizations: List[CulturalCustomization] = field(default_factory=list)
    expected_share: Optional[float] = None


@dataclass
class NeuroscienceObjective:
    objective_id: str
    name: str
    objective_type: str = "engagement"  # attention, memory, engagement, ...
    target_metric: str = ""
    expected_improvement: float = 0.0
    validation_method: str = ""


@dataclass
class AccessibilityConsideration:
    type: str  # visual, auditory, motor, cognitive
    level: str = "AA"  # WCAG level
    adaptations: List[str] = field(default_factory=list)
    testing_required: bool = False


@dataclass
class MetricDefinition:
    """Definition of a metric tracked by an experiment."""
    metric_id: str
    name: str = ""
    metric_type: str = "conversion"  # conversion, engagement, retention, ...
    goal: str = "increase"
    expected_lift: float = 0.0


@dataclass
class GuardrailConfig:
    metric_id: str
    threshold: float
    direction: GuardrailDirection = GuardrailDirection.ABOVE
    action: GuardrailAction = GuardrailAction.ALERT


@dataclass
class StatisticalConfig:
    alpha: float = 0.05
    power: float = 0.8
    minimum_detectable_effect: float = 0.05  # absolute difference in rates
    multiple_testing_correction: MultipleTestingCorrection = MultipleTestingCorrection.FDR
    baseline_rate: float = 0.1


@dataclass
class ExperimentConfig:
    """Configuration and lifecycle state of one experiment."""
    name: str
    variants: List[Variant] = field(default_factory=list)
    traffic_allocation: List[TrafficAllocation] = field(default_factory=list)
    experiment_id: str = ""
    description: str = ""
    hypothesis: str = ""
    type: ExperimentType = ExperimentType.AB
    status: ExperimentStatus = ExperimentStatus.DRAFT

    target_audience: AudienceConfig = field(default_factory=AudienceConfig)
    cultural_segments: List[CulturalSegment] = field(default_factory=list)
    neuroscience_objectives: List[NeuroscienceObjective] = field(default_factory=list)
    accessibility_considerations: List[AccessibilityConsideration] = field(default_factory=list)

    primary_metric: MetricDefinition = field(
        default_factory=lambda: MetricDefinition("conversion", "Conversion Rate")
    )
    secondary_metrics: List[MetricDefinition] = field(default_factory=list)
    guardrail_metrics: List[GuardrailConfig] = field(default_factory=list)
    statistical_config: StatisticalConfig = field(default_factory=StatisticalConfig)

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    duration_days: Optional[float] = None

    creator: str = "system"
    tags: List[str] = field(default_factory=list)
    cultural_approval: bool = False
    neuroscience_validation: bool = False
    ethics_review: bool = False

    # Set by the registry
    created_at: Optional[datetime] = None
    required_sample_size: Optional[int] = None
    allocation_ranges: Tuple[AllocationRange, ...] = ()

    def variant_ids(self) -> List[str]:
        return [v.variant_id for v in self.variants]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return _jsonable(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExperimentConfig":
        d = dict(data)

        def rules(items):
            return [AudienceRule(r["field"], RuleOperator(r["operator"]), r.get("value")) for r in items or []]

        audience = d.get("target_audience") or {}
        stat = d.get("statistical_config") or {}
        return cls(
            name=d["name"],
            experiment_id=d.get("experiment_id", ""),
            description=d.get("description", ""),
            hypothesis=d.get("hypothesis", ""),
            type=ExperimentType(d.get("type", "ab")),
            status=ExperimentStatus(d.get("status", "draft")),
            variants=[Variant(**v) for v in d.get("variants", [])],
            traffic_allocation=[
                TrafficAllocation(a["variant_id"], a["percentage"], rules(a.get("conditions")))
                for a in d.get("traffic_allocation", [])
            ],
            target_audience=AudienceConfig(
                include_rules=rules(audience.get("include_rules")),
                exclude_rules=rules(audience.get("exclude_rules")),
                sample_size=audience.get("sample_size", 1000),
            ),
            cultural_segments=[
                CulturalSegment(
                    **{
                        **s,
                        "customizations": [CulturalCustomization(**c) for c in s.get("customizations", [])],
                    }
                )
                for s in d.get("cultural_segments", [])
            ],
            neuroscience_objectives=[NeuroscienceObjective(**o) for o in d.get("neuroscience_objectives", [])],
            accessibility_considerations=[
                AccessibilityConsideration(**a) for a in d.get("accessibility_considerations", [])
            ],
            primary_metric=MetricDefinition(**d["primary_metric"]) if d.get("primary_metric") else MetricDefinition(
                "conversion", "Conversion Rate"
            ),
            secondary_metrics=[MetricDefinition(**m) for m in d.get("secondary_metrics", [])],
            guardrail_metrics=[
                GuardrailConfig(
                    g["metric_id"],
                    g["threshold"],
                    GuardrailDirection(g.get("direction", "above")),
                    GuardrailAction(g.get("action", "alert")),
                )
                for g in d.get("guardrail_metrics", [])
            ],
            statistical_config=StatisticalConfig(
                **{
                    **stat,
                    "multiple_testing_correction": MultipleTestingCorrection(
                        stat.get("multiple_testing_correction", "fdr")
                    ),
                }
            ),
            start_date=_parse_dt(d.get("start_date")),
            end_date=_parse_dt(d.get("end_date")),
            duration_days=d.get("duration_days"),
            creator=d.get("creator", "system"),
            tags=list(d.get("tags", [])),
            cultural_approval=d.get("cultural_approval", False),
            neuroscience_validation=d.get("neuroscience_validation", False),
            ethics_review=d.get("ethics_review", False),
            created_at=_parse_dt(d.get("created_at")),
            required_sample_size=d.get("required_sample_size"),
            allocation_ranges=tuple(
                AllocationRange(r["variant_id"], r["lower"], r["upper"], tuple(rules(r.get("conditions"))))
                for r in d.get("allocation_ranges", [])
            ),
        )


@dataclass(frozen=True)
class Assignment:
    """Experiment assignment for a single participant. Never reassigned."""
    experiment_id: str
    user_id: str
    variant_id: str
    assigned_at: datetime = field(default_factory=utcnow)


@dataclass
class MetricState:
    """Running mean and sum of squared deviations (Welford) for one metric on one arm."""
    experiment_id: str
    variant_id: str
    metric_id: str
    count: int = 0
    mean: float = 0.0
    m2: float = 0.0

    def update(self, value: float) -> None:
        self.count += 1
        delta = value - self.mean
        self.mean += delta / self.count
        self.m2 += delta * (value - self.mean)

    @property
    def variance(self) -> float:
        """Population variance."""
        return self.m2 / self.count if self.count > 0 else 0.0

    @property
    def sample_variance(self) -> float:
        return self.m2 / (self.count - 1) if self.count > 1 else 0.0


@dataclass
class CulturalMetricResult:
    """Externally measured cultural outcome for one arm."""
    culture: str
    participants: int
    performance: float
    bias_score: float = 0.0
    cultural_relevance: float = 0.0
    localized_success: float = 0.0


@dataclass
class NeuroscienceMetricResult:
    objective: str
    measured: float
    expected: float
    neuroplasticity_index: float = 0.0
    cognitive_load_score: float = 0.0
    attention_retention: float = 0.0


@dataclass
class AccessibilityMetricResult:
    type: str
    compliance_level: str
    usability_score: float = 0.0
    satisfaction_rating: float = 0.0
    task_completion: float = 0.0


@dataclass
class StatisticalSignificance:
    p_value: float = 1.0
    confidence_interval: Tuple[float, float] = (0.0, 0.0)
    effect_size: float = 0.0
    is_significant: bool = False


@dataclass
class ArmTally:
    """Counters and external measurements for one arm of an experiment."""
    experiment_id: str
    variant_id: str
    participants: int = 0
    conversions: int = 0
    dropouts: int = 0
    segment_counts: Dict[str, int] = field(default_factory=dict)
    cultural_metrics: List[CulturalMetricResult] = field(default_factory=list)
    neuroscience_metrics: List[NeuroscienceMetricResult] = field(default_factory=list)
    accessibility_metrics: List[AccessibilityMetricResult] = field(default_factory=list)
    statistical_significance: StatisticalSignificance = field(default_factory=StatisticalSignificance)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArmTally":
        sig = data.get("statistical_significance") or {}
        return cls(
            experiment_id=data["experiment_id"],
            variant_id=data["variant_id"],
            participants=data.get("participants", 0),
            conversions=data.get("conversions", 0),
            dropouts=data.get("dropouts", 0),
            segment_counts=dict(data.get("segment_counts", {})),
            cultural_metrics=[CulturalMetricResult(**m) for m in data.get("cultural_metrics", [])],
            neuroscience_metrics=[NeuroscienceMetricResult(**m) for m in data.get("neuroscience_metrics", [])],
            accessibility_metrics=[AccessibilityMetricResult(**m) for m in data.get("accessibility_metrics", [])],
            statistical_significance=StatisticalSignificance(
                p_value=sig.get("p_value", 1.0),
                confidence_interval=tuple(sig.get("confidence_interval", (0.0, 0.0))),
                effect_size=sig.get("effect_size", 0.0),
                is_significant=sig.get("is_significant", False),
            ),
            updated_at=_parse_dt(data.get("updated_at")) or utcnow(),
        )


@dataclass
class ExperimentResult:
    """Per-variant aggregate snapshot."""
    experiment_id: str
    variant_id: str
    participants: int = 0
    conversions: int = 0
    conversion_rate: float = 0.0
    dropouts: int = 0
    metrics: List[MetricState] = field(default_factory=list)
    segment_counts: Dict[str, int] = field(default_factory=dict)
    cultural_metrics: List[CulturalMetricResult] = field(default_factory=list)
    neuroscience_metrics: List[NeuroscienceMetricResult] = field(default_factory=list)
    accessibility_metrics: List[AccessibilityMetricResult] = field(default_factory=list)
    statistical_significance: StatisticalSignificance = field(default_factory=StatisticalSignificance)
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def dropout_rate(self) -> float:
        return self.dropouts / self.participants if self.participants > 0 else 0.0

    def metric(self, metric_id: str) -> Optional[MetricState]:
        for m in self.metrics:
            if m.metric_id == metric_id:
                return m
        return None

    def to_dict(self) -> Dict[str, Any]:
        d = _jsonable(asdict(self))
        d["dropout_rate"] = self.dropout_rate
        for m, state in zip(d["metrics"], self.metrics):
            m["variance"] = state.variance
        return d


@dataclass
class VariantComparison:
    """One arm compared against control."""
    variant_id: str
    control_rate: float
    variant_rate: float
    lift: float
    p_value: float
    adjusted_p_value: float
    confidence_interval: Tuple[float, float]
    effect_size: float
    is_significant: bool


@dataclass
class PowerAnalysis:
    achieved_power: float = 0.0
    required_sample_size: int = 0
    detectable_effect: Optional[float] = None  # absolute MDE at the current smallest arm


@dataclass
class StatisticalAnalysis:
    control_conversion_rate: float = 0.0
    variant_conversion_rate: float = 0.0
    lift: float = 0.0
    p_value: float = 1.0
    confidence_interval: Tuple[float, float] = (0.0, 0.0)
    effect_size: float = 0.0
    is_significant: bool = False
    sample_size: int = 0
    power_analysis: PowerAnalysis = field(default_factory=PowerAnalysis)
    comparisons: List[VariantComparison] = field(default_factory=list)
    winner: Optional[str] = None  # significant arm with the largest positive lift


@dataclass
class BiasReport:
    bias_detected: bool = False
    bias_types: List[str] = field(default_factory=list)
    bias_score: float = 0.0
    recommendations: List[str] = field(default_factory=list)
    srm_p_value: Optional[float] = None


@dataclass
class CulturalAnalysis:
    """Aggregated cultural measurements. Scores are None when nothing was measured."""
    overall_cultural_fit: Optional[float] = None
    bias_detected: bool = False
    cultural_relevance: Optional[float] = None
    localization_success: Optional[float] = None
    results: List[CulturalMetricResult] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


@dataclass
class NeuroscienceAnalysis:
    neuroplasticity_improvement: Optional[float] = None
    cognitive_load_optimization: Optional[float] = None
    attention_engagement: Optional[float] = None
    results: List[NeuroscienceMetricResult] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


@dataclass
class ExperimentAnalysis:
    """Complete analysis returned by the service."""
    experiment_id: str
    results: List[ExperimentResult]
    analysis: StatisticalAnalysis
    cultural_analysis: CulturalAnalysis
    neuroscience_analysis: NeuroscienceAnalysis
    bias: BiasReport
    recommendations: List[str] = field(default_factory=list)
    analysis_timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "experiment_id": self.experiment_id,
            "analysis_timestamp": self.analysis_timestamp.isoformat(),
            "results": [r.to_dict() for r in self.results],
            "analysis": _jsonable(asdict(self.analysis)),
            "cultural_analysis": _jsonable(asdict(self.cultural_analysis)),
            "neuroscience_analysis": _jsonable(asdict(self.neuroscience_analysis)),
            "bias": _jsonable(asdict(self.bias)),
            "recommendations": list(self.recommendations),
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value))
