"""Configuration models using Pydantic for validation."""
from datetime import timedelta
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
import os

from gcm_exporter.timeutils import parse_duration


def _coerce_duration(value):
    """Accept "5m"-style strings in addition to what pydantic parses itself."""
    if isinstance(value, str):
        try:
            return parse_duration(value)
        except ValueError:
            # Let pydantic try ISO 8601
            return value
    return value


def parse_metric_type_prefixes(prefixes: List[str]) -> List[str]:
    """
    Drop duplicate prefixes and prefixes already covered by a shorter one.

    "compute.googleapis.com/instance" is dropped when "compute.googleapis.com"
    is also configured, otherwise the same descriptors would be fetched twice.
    """
    result: List[str] = []
    for prefix in sorted(set(prefixes)):
        if result and prefix.startswith(result[-1]):
            continue
        result.append(prefix)
    return result


class MetricFilter(BaseModel):
    """Extra filter AND-ed to time series queries of matching metric types."""
    model_config = ConfigDict(frozen=True)

    targeted_metric_prefix: str
    filter_query: str

    @classmethod
    def parse(cls, value: str) -> "MetricFilter":
        """Parse the "prefix:filter query" shorthand."""
        prefix, sep, query = value.partition(":")
        if not sep or not prefix or not query:
            raise ValueError(f"Extra filter must be 'prefix:query', got {value!r}")
        return cls(targeted_metric_prefix=prefix, filter_query=query)


class AggregationConfig(BaseModel):
    """Server-side aggregation applied to time series of matching metric types."""
    model_config = ConfigDict(frozen=True)

    targeted_metric_prefix: str
    alignment_period: str = "60s"
    cross_series_reducer: str = "REDUCE_NONE"
    group_by_fields: List[str] = Field(default_factory=list)
    per_series_aligner: str = "ALIGN_NONE"

    @classmethod
    def parse(cls, value: str) -> "AggregationConfig":
        """Parse "prefix:alignment_period:reducer:group,by,fields:aligner"."""
        parts = value.split(":")
        if len(parts) != 5:
            raise ValueError(
                "Aggregation must be 'prefix:alignment_period:cross_series_reducer:"
                f"group_by_fields:per_series_aligner', got {value!r}"
            )
        prefix, period, reducer, fields, aligner = parts
        return cls(
            targeted_metric_prefix=prefix,
            alignment_period=period,
            cross_series_reducer=reducer,
            group_by_fields=[f for f in fields.split(",") if f],
            per_series_aligner=aligner,
        )


class MonitoringConfig(BaseModel):
    """What to collect and how to translate it."""
    project_id: str = ""
    metrics_prefixes: List[str] = Field(default_factory=list, validate_default=True)
    extra_filters: List[MetricFilter] = Field(default_factory=list)
    aggregations: List[AggregationConfig] = Field(default_factory=list)
    interval: timedelta = timedelta(minutes=5)
    offset: timedelta = timedelta(0)
    ingest_delay: bool = False
    fill_missing_labels: bool = True
    drop_delegated_projects: bool = False
    aggregate_deltas: bool = False
    aggregate_deltas_ttl: timedelta = timedelta(minutes=30)
    sweep_interval: timedelta = timedelta(minutes=1)
    descriptor_cache_ttl: timedelta = timedelta(0)
    descriptor_cache_only_google: bool = True

    @field_validator(
        "interval", "offset", "aggregate_deltas_ttl", "sweep_interval",
        "descriptor_cache_ttl", mode="before"
    )
    @classmethod
    def parse_durations(cls, v):
        return _coerce_duration(v)

    @field_validator("metrics_prefixes")
    @classmethod
    def validate_prefixes(cls, v):
        """Validate and normalize metric type prefixes."""
        if not v:
            raise ValueError("At least one metric type prefix must be defined")
        return parse_metric_type_prefixes(v)

    @field_validator("extra_filters", mode="before")
    @classmethod
    def parse_extra_filters(cls, v):
        return [MetricFilter.parse(f) if isinstance(f, str) else f for f in (v or [])]

    @field_validator("aggregations", mode="before")
    @classmethod
    def parse_aggregations(cls, v):
        return [AggregationConfig.parse(a) if isinstance(a, str) else a for a in (v or [])]


class ApiConfig(BaseModel):
    """Monitoring API transport settings."""
    base_url: str = "https://monitoring.googleapis.com/v3"
    timeout_s: float = 30.0
    page_size: Optional[int] = None
    access_token: Optional[str] = None


class ExporterConfig(BaseModel):
    """Prometheus pull exporter configuration."""
    port: int = 9255
    bind_address: str = "0.0.0.0"
    namespace: str = "stackdriver"


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"
    control_api_enabled: bool = True
    control_api_port: int = 8081


class Config(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    exporter: ExporterConfig = Field(default_factory=ExporterConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    monitoring: MonitoringConfig

    @model_validator(mode='after')
    def validate_project(self):
        """Ensure a project to scrape is configured."""
        if not self.monitoring.project_id:
            raise ValueError("monitoring.project_id must be set")
        return self


def load_config(config_path: str) -> Config:
    """Load and validate configuration from YAML file."""
    import yaml

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    if env_project := os.getenv('GCM_PROJECT_ID'):
        raw_config.setdefault('monitoring', {})['project_id'] = env_project

    if env_token := os.getenv('GCM_ACCESS_TOKEN'):
        raw_config.setdefault('api', {})['access_token'] = env_token

    if env_log_level := os.getenv('LOG_LEVEL'):
        raw_config.setdefault('global', {})['log_level'] = env_log_level

    try:
        config = Config(**raw_config)
        return config
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
