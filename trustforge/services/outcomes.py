"""
outcomes.py
~~~~~~~~~~~
Typed results that flow from the scanner clients through the orchestrator
into scoring, rendering and persistence.

    payload: provider-category specific findings (one dataclass per category)
    outcome: Success(payload) | Failed(reason) | Skipped(reason)
    bundle:  immutable provider name → outcome mapping for one job

Everything here serialises to plain JSON-compatible dicts so a bundle can be
stored on the job record and read back unchanged.
"""
from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, Union


class ProviderCategory(str, Enum):
    STATIC_ANALYSIS = "static_analysis"
    AV_AGGREGATOR = "av_aggregator"
    REPUTATION = "reputation"
    SANDBOX = "sandbox"


# ─── Payloads ────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Finding:
    """One static-analysis issue."""
    title: str
    description: str = ""
    section: str = ""
    recommendation: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "section": self.section,
            "recommendation": self.recommendation,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Finding":
        return cls(
            title=str(data.get("title") or "Untitled Finding"),
            description=str(data.get("description") or ""),
            section=str(data.get("section") or ""),
            recommendation=str(data.get("recommendation") or ""),
        )


@dataclass(frozen=True)
class Permission:
    """One permission requested by the application, as classified by the engine."""
    name: str
    status: str = ""
    info: str = ""
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "status": self.status, "info": self.info, "description": self.description}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Permission":
        return cls(
            name=str(data.get("name") or ""),
            status=str(data.get("status") or ""),
            info=str(data.get("info") or ""),
            description=str(data.get("description") or ""),
        )


@dataclass(frozen=True)
class StaticAnalysisReport:
    """
    Severity-tagged findings from the static-analysis engine.

    Attributes:
        high / medium / low:  Findings per severity bucket (these drive the score).
        info:                 Informational findings; reported, never scored.
        permissions:          Permissions the package requests.
        app_name:             Application label reported by the engine.
        md5 / sha1 / sha256:  Hashes of the scanned package.
        size:                 Human readable package size as reported.
    """
    kind: ClassVar[ProviderCategory] = ProviderCategory.STATIC_ANALYSIS

    high: tuple[Finding, ...] = ()
    medium: tuple[Finding, ...] = ()
    low: tuple[Finding, ...] = ()
    info: tuple[Finding, ...] = ()
    permissions: tuple[Permission, ...] = ()
    app_name: str | None = None
    md5: str | None = None
    sha1: str | None = None
    sha256: str | None = None
    size: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "high": [f.to_dict() for f in self.high],
            "medium": [f.to_dict() for f in self.medium],
            "low": [f.to_dict() for f in self.low],
            "info": [f.to_dict() for f in self.info],
            "permissions": [p.to_dict() for p in self.permissions],
            "app_name": self.app_name,
            "md5": self.md5,
            "sha1": self.sha1,
            "sha256": self.sha256,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StaticAnalysisReport":
        return cls(
            high=tuple(Finding.from_dict(f) for f in data.get("high", [])),
            medium=tuple(Finding.from_dict(f) for f in data.get("medium", [])),
            low=tuple(Finding.from_dict(f) for f in data.get("low", [])),
            info=tuple(Finding.from_dict(f) for f in data.get("info", [])),
            permissions=tuple(Permission.from_dict(p) for p in data.get("permissions", [])),
            app_name=data.get("app_name"),
            md5=data.get("md5"),
            sha1=data.get("sha1"),
            sha256=data.get("sha256"),
            size=data.get("size"),
        )


@dataclass(frozen=True)
class EngineVerdict:
    category: str
    result: str | None = None


@dataclass(frozen=True)
class AVAggregateReport:
    """Per-engine verdicts from the multi-engine AV aggregator."""
    kind: ClassVar[ProviderCategory] = ProviderCategory.AV_AGGREGATOR

    engines: Mapping[str, EngineVerdict] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "engines", MappingProxyType(dict(self.engines)))

    @property
    def malicious_count(self) -> int:
        return sum(1 for v in self.engines.values() if v.category == "malicious")

    @property
    def engine_count(self) -> int:
        return len(self.engines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "engines": {
                name: {"category": v.category, "result": v.result}
                for name, v in self.engines.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AVAggregateReport":
        engines = {
            name: EngineVerdict(category=str(v.get("category", "")), result=v.get("result"))
            for name, v in (data.get("engines") or {}).items()
        }
        return cls(engines=engines)


@dataclass(frozen=True)
class ReputationReport:
    """Per-engine detections from the file-reputation service."""
    kind: ClassVar[ProviderCategory] = ProviderCategory.REPUTATION

    detections: Mapping[str, str | None] = field(default_factory=dict)
    overall_result: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "detections", MappingProxyType(dict(self.detections)))

    @property
    def detection_count(self) -> int:
        return sum(1 for threat in self.detections.values() if threat)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "detections": dict(self.detections),
            "overall_result": self.overall_result,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReputationReport":
        return cls(
            detections=data.get("detections") or {},
            overall_result=data.get("overall_result"),
        )


@dataclass(frozen=True)
class SandboxReport:
    """Verdict and identified threats from the behavioural sandbox."""
    kind: ClassVar[ProviderCategory] = ProviderCategory.SANDBOX

    verdict: str | None = None
    threats: tuple[str, ...] = ()
    threat_score: int | None = None

    @property
    def is_malicious(self) -> bool:
        return (self.verdict or "").lower() == "malicious"

    @property
    def is_suspicious(self) -> bool:
        return (self.verdict or "").lower() == "suspicious"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "verdict": self.verdict,
            "threats": list(self.threats),
            "threat_score": self.threat_score,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SandboxReport":
        return cls(
            verdict=data.get("verdict"),
            threats=tuple(str(t) for t in data.get("threats", [])),
            threat_score=data.get("threat_score"),
        )


Payload = Union[StaticAnalysisReport, AVAggregateReport, ReputationReport, SandboxReport]

_PAYLOAD_TYPES: dict[str, type] = {
    cls.kind.value: cls
    for cls in (StaticAnalysisReport, AVAggregateReport, ReputationReport, SandboxReport)
}


def payload_from_dict(data: dict[str, Any]) -> Payload:
    try:
        payload_cls = _PAYLOAD_TYPES[data["kind"]]
    except KeyError:
        raise ValueError(f"Unknown payload kind: {data.get('kind')!r}")
    return payload_cls.from_dict(data)


# ─── Outcomes ────────────────────────────────────────────────────────────────
class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Success:
    payload: Payload
    status: ClassVar[OutcomeStatus] = OutcomeStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status.value, "payload": self.payload.to_dict()}


@dataclass(frozen=True)
class Failed:
    reason: str
    status: ClassVar[OutcomeStatus] = OutcomeStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status.value, "reason": self.reason}


@dataclass(frozen=True)
class Skipped:
    reason: str
    status: ClassVar[OutcomeStatus] = OutcomeStatus.SKIPPED

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status.value, "reason": self.reason}


ProviderOutcome = Union[Success, Failed, Skipped]


def outcome_from_dict(data: dict[str, Any]) -> ProviderOutcome:
    status = OutcomeStatus(data["status"])
    if status is OutcomeStatus.SUCCESS:
        return Success(payload_from_dict(data["payload"]))
    if status is OutcomeStatus.FAILED:
        return Failed(str(data.get("reason", "")))
    return Skipped(str(data.get("reason", "")))


# ─── Bundle ──────────────────────────────────────────────────────────────────
class ScanResultBundle(Mapping):
    """Read-only provider name → outcome mapping for a single job."""

    def __init__(self, outcomes: Mapping[str, ProviderOutcome]):
        self._outcomes = MappingProxyType(dict(outcomes))

    def __getitem__(self, provider: str) -> ProviderOutcome:
        return self._outcomes[provider]

    def __iter__(self) -> Iterator[str]:
        return iter(self._outcomes)

    def __len__(self) -> int:
        return len(self._outcomes)

    def __repr__(self) -> str:
        return f"ScanResultBundle({dict(self._outcomes)!r})"

    def payloads(self) -> list[Payload]:
        """Payloads of every successful provider, in provider order."""
        return [o.payload for o in self._outcomes.values() if isinstance(o, Success)]

    def payload_of(self, payload_type: type) -> Payload | None:
        for payload in self.payloads():
            if isinstance(payload, payload_type):
                return payload
        return None

    def to_dict(self) -> dict[str, Any]:
        return {name: outcome.to_dict() for name, outcome in self._outcomes.items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScanResultBundle":
        return cls({name: outcome_from_dict(raw) for name, raw in data.items()})
