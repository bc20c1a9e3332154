"""Tracking entities: experiments, runs, params, metrics, tags and artifacts."""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from mltrack.common.common import LifecycleStage, RunStatus, SourceType


@dataclass
class Experiment:
    """A named grouping of runs."""
    experiment_id: str
    name: str
    artifact_location: str
    lifecycle_stage: str = LifecycleStage.ACTIVE.value

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Experiment":
        return cls(experiment_id=str(d["experiment_id"]),
                   name=d["name"],
                   artifact_location=d["artifact_location"],
                   lifecycle_stage=d.get("lifecycle_stage", LifecycleStage.ACTIVE.value))


@dataclass
class Param:
    key: str
    value: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Param":
        return cls(key=d["key"], value=str(d["value"]))


@dataclass
class RunTag:
    key: str
    value: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RunTag":
        return cls(key=d["key"], value=str(d["value"]))


@dataclass
class Metric:
    """One logged value of a metric; a metric's history is a list of these."""
    key: str
    value: float
    timestamp: int
    step: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Metric":
        return cls(key=d["key"],
                   value=float(d["value"]),
                   timestamp=int(d["timestamp"]),
                   step=int(d.get("step") or 0))

    def sort_key(self):
        """Ordering used to decide a metric's latest value."""
        return self.step, self.timestamp, self.value


@dataclass
class RunInfo:
    run_id: str
    experiment_id: str
    user_id: str
    status: str
    start_time: int
    end_time: Optional[int]
    artifact_uri: str
    lifecycle_stage: str = LifecycleStage.ACTIVE.value
    run_name: str = ""
    source_type: str = SourceType.UNKNOWN.name
    source_name: str = ""
    entry_point_name: str = ""
    source_version: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RunInfo":
        return cls(run_id=d["run_id"],
                   experiment_id=str(d["experiment_id"]),
                   user_id=d.get("user_id") or "",
                   status=RunStatus.from_string(d["status"]).name,
                   start_time=int(d["start_time"]),
                   end_time=int(d["end_time"]) if d.get("end_time") is not None else None,
                   artifact_uri=d["artifact_uri"],
                   lifecycle_stage=d.get("lifecycle_stage", LifecycleStage.ACTIVE.value),
                   run_name=d.get("run_name") or "",
                   source_type=SourceType.from_string(d.get("source_type", "UNKNOWN")).name,
                   source_name=d.get("source_name") or "",
                   entry_point_name=d.get("entry_point_name") or "",
                   source_version=d.get("source_version") or "")


@dataclass
class RunData:
    metrics: Dict[str, float] = field(default_factory=dict)
    params: Dict[str, str] = field(default_factory=dict)
    tags: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_entities(cls, metrics: List[Metric], params: List[Param], tags: List[RunTag]) -> "RunData":
        """Build run data keeping only the latest value of each metric."""
        latest: Dict[str, Metric] = {}
        for metric in metrics:
            current = latest.get(metric.key)
            if current is None or metric.sort_key() >= current.sort_key():
                latest[metric.key] = metric
        return cls(metrics={k: m.value for k, m in latest.items()},
                   params={p.key: p.value for p in params},
                   tags={t.key: t.value for t in tags})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RunData":
        return cls(metrics={k: float(v) for k, v in (d.get("metrics") or {}).items()},
                   params=dict(d.get("params") or {}),
                   tags=dict(d.get("tags") or {}))


@dataclass
class Run:
    info: RunInfo
    data: RunData

    def to_dict(self) -> Dict[str, Any]:
        return {"info": self.info.to_dict(), "data": self.data.to_dict()}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Run":
        return cls(info=RunInfo.from_dict(d["info"]),
                   data=RunData.from_dict(d.get("data") or {}))


@dataclass
class FileInfo:
    """An entry of an artifact listing, with a path relative to the artifact root."""
    path: str
    is_dir: bool
    file_size: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "FileInfo":
        size = d.get("file_size")
        return cls(path=d["path"],
                   is_dir=bool(d.get("is_dir", False)),
                   file_size=int(size) if size is not None else None)
