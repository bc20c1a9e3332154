"""Request bodies of the tracking server's POST endpoints."""
from typing import List, Optional

from pydantic import BaseModel, Field


class CreateExperimentRequest(BaseModel):
    name: str
    artifact_location: Optional[str] = None


class ExperimentIdRequest(BaseModel):
    experiment_id: str


class UpdateExperimentRequest(BaseModel):
    experiment_id: str
    new_name: str


class TagModel(BaseModel):
    key: str
    value: str


class ParamModel(BaseModel):
    key: str
    value: str


class MetricModel(BaseModel):
    key: str
    value: float
    timestamp: int
    step: int = 0


class CreateRunRequest(BaseModel):
    experiment_id: str
    user_id: str = ""
    start_time: Optional[int] = None
    tags: List[TagModel] = Field(default_factory=list)
    run_name: Optional[str] = None
    source_type: str = "UNKNOWN"
    source_name: str = ""
    entry_point_name: str = ""
    source_version: str = ""


class RunIdRequest(BaseModel):
    run_id: str


class UpdateRunRequest(BaseModel):
    run_id: str
    status: str
    end_time: Optional[int] = None


class LogMetricRequest(MetricModel):
    run_id: str


class LogParamRequest(ParamModel):
    run_id: str


class SetTagRequest(TagModel):
    run_id: str


class DeleteTagRequest(BaseModel):
    run_id: str
    key: str


class LogBatchRequest(BaseModel):
    run_id: str
    metrics: List[MetricModel] = Field(default_factory=list)
    params: List[ParamModel] = Field(default_factory=list)
    tags: List[TagModel] = Field(default_factory=list)


class SearchRunsRequest(BaseModel):
    experiment_ids: List[str] = Field(default_factory=list)
    filter: Optional[str] = None
    run_view_type: str = "ACTIVE_ONLY"
    max_results: int = 1000
    order_by: List[str] = Field(default_factory=list)
    page_token: Optional[str] = None
