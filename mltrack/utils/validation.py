"""Validation of user supplied names and values before they reach a store."""
import numbers
import posixpath
import re
from typing import List, Optional

from mltrack.entities import Metric, Param, RunTag
from mltrack.exceptions import TrackingError, ErrorCode

_VALID_KEY_REGEX = re.compile(r"^[/\w.\- ]*$")
_VALID_RUN_ID_REGEX = re.compile(r"^[\w\-]{1,256}$")

MAX_ENTITY_KEY_LENGTH = 250
MAX_PARAM_VAL_LENGTH = 500
MAX_TAG_VAL_LENGTH = 5000

MAX_METRICS_PER_BATCH = 1000
MAX_PARAMS_TAGS_PER_BATCH = 100
MAX_ENTITIES_PER_BATCH = 1000

_BAD_CHARACTERS_MESSAGE = (
    "Names may only contain alphanumerics, underscores (_), dashes (-), periods (.),"
    " spaces ( ), and slashes (/)."
)


def _invalid(message: str) -> TrackingError:
    return TrackingError(message, ErrorCode.INVALID_PARAMETER_VALUE)


def path_not_unique(name: str) -> bool:
    norm = posixpath.normpath(name)
    return norm != name or norm == "." or norm.startswith("..") or norm.startswith("/")


def validate_key_name(name: str, entity: str = "key") -> None:
    if name is None or not isinstance(name, str) or name == "":
        raise _invalid(f"Invalid {entity} name: '{name}'. Names must be non-empty strings.")
    if len(name) > MAX_ENTITY_KEY_LENGTH:
        raise _invalid(f"{entity.capitalize()} name '{name[:32]}...' exceeds the maximum "
                       f"length of {MAX_ENTITY_KEY_LENGTH}")
    if not _VALID_KEY_REGEX.match(name):
        raise _invalid(f"Invalid {entity} name: '{name}'. {_BAD_CHARACTERS_MESSAGE}")
    if path_not_unique(name):
        raise _invalid(f"Invalid {entity} name: '{name}'. Names may be treated as files "
                       "in certain cases, and must not resolve to other names when treated "
                       "as such. This name would resolve to "
                       f"'{posixpath.normpath(name)}'")


def validate_metric(key: str, value, timestamp, step) -> None:
    validate_key_name(key, "metric")
    if isinstance(value, bool) or not isinstance(value, numbers.Number):
        raise _invalid(f"Got invalid value {value!r} for metric '{key}' "
                       f"(timestamp={timestamp}). Please specify value as a number.")
    if isinstance(timestamp, bool) or not isinstance(timestamp, numbers.Integral):
        raise _invalid(f"Got invalid timestamp {timestamp!r} for metric '{key}'. "
                       "Timestamp must be an integer (milliseconds since the epoch).")
    if isinstance(step, bool) or not isinstance(step, numbers.Integral):
        raise _invalid(f"Got invalid step {step!r} for metric '{key}'. Step must be an integer.")


def validate_param(key: str, value) -> None:
    validate_key_name(key, "param")
    if len(str(value)) > MAX_PARAM_VAL_LENGTH:
        raise _invalid(f"Param value for '{key}' exceeds the maximum length "
                       f"of {MAX_PARAM_VAL_LENGTH}")


def validate_tag(key: str, value) -> None:
    validate_key_name(key, "tag")
    if len(str(value)) > MAX_TAG_VAL_LENGTH:
        raise _invalid(f"Tag value for '{key}' exceeds the maximum length of {MAX_TAG_VAL_LENGTH}")


def validate_run_id(run_id: str) -> None:
    if not isinstance(run_id, str) or not _VALID_RUN_ID_REGEX.match(run_id):
        raise _invalid(f"Invalid run ID: '{run_id}'")


def validate_experiment_id(experiment_id) -> None:
    if experiment_id is None or str(experiment_id).strip() == "":
        raise _invalid("Experiment ID must be provided")


def validate_experiment_name(name) -> None:
    if name is None or not isinstance(name, str) or name.strip() == "":
        raise _invalid(f"Invalid experiment name: '{name}'. Names must be non-empty strings.")


def validate_param_unchanged(key: str, old_value: Optional[str], new_value: str, run_id: str) -> None:
    """Params are immutable once logged, re-logging the same value is allowed."""
    if old_value is not None and old_value != str(new_value):
        raise _invalid(f"Changing param values is not allowed. Param with key='{key}' was "
                       f"already logged with value='{old_value}' for run ID='{run_id}'. "
                       f"Attempted logging new value '{new_value}'.")


def validate_batch(metrics: List[Metric], params: List[Param], tags: List[RunTag]) -> None:
    if len(metrics) > MAX_METRICS_PER_BATCH:
        raise _invalid(f"A batch may contain at most {MAX_METRICS_PER_BATCH} metrics, "
                       f"got {len(metrics)}")
    if len(params) > MAX_PARAMS_TAGS_PER_BATCH:
        raise _invalid(f"A batch may contain at most {MAX_PARAMS_TAGS_PER_BATCH} params, "
                       f"got {len(params)}")
    if len(tags) > MAX_PARAMS_TAGS_PER_BATCH:
        raise _invalid(f"A batch may contain at most {MAX_PARAMS_TAGS_PER_BATCH} tags, "
                       f"got {len(tags)}")
    total = len(metrics) + len(params) + len(tags)
    if total > MAX_ENTITIES_PER_BATCH:
        raise _invalid(f"A batch may contain at most {MAX_ENTITIES_PER_BATCH} entities, got {total}")

    for metric in metrics:
        validate_metric(metric.key, metric.value, metric.timestamp, metric.step)
    for param in params:
        validate_param(param.key, param.value)
    for tag in tags:
        validate_tag(tag.key, tag.value)

    seen = {}
    for param in params:
        if param.key in seen and seen[param.key] != param.value:
            raise _invalid(f"Duplicate param key '{param.key}' with different values in batch")
        seen[param.key] = param.value


def validate_artifact_path(artifact_path: Optional[str]) -> None:
    """Relative artifact paths must stay inside the artifact root."""
    if artifact_path is None or artifact_path == "":
        return
    norm = posixpath.normpath(artifact_path.replace("\\", "/"))
    if norm.startswith("/") or norm == ".." or norm.startswith("../"):
        raise _invalid(f"Invalid artifact path: '{artifact_path}'")
