"""Monitoring API client used to list metric descriptors and time series."""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from gcm_exporter.config import AggregationConfig, ApiConfig
from gcm_exporter.errors import MonitoringApiError
from gcm_exporter.series import DescriptorPage, MetricDescriptor, TimeSeries, TimeSeriesPage
from gcm_exporter.timeutils import format_timestamp

logger = logging.getLogger(__name__)


def project_resource(project_id: str) -> str:
    return f"projects/{project_id}"


class MonitoringClient(ABC):
    """
    One request per call. Callers drive pagination by passing back the
    returned next_page_token until it is empty.
    """

    @abstractmethod
    def list_metric_descriptors(
        self,
        project_id: str,
        filter: str,
        page_token: str = ""
    ) -> DescriptorPage:
        """Fetch one page of metric descriptors matching a filter."""

    @abstractmethod
    def list_time_series(
        self,
        project_id: str,
        filter: str,
        start_time: datetime,
        end_time: datetime,
        aggregation: Optional[AggregationConfig] = None,
        page_token: str = ""
    ) -> TimeSeriesPage:
        """Fetch one page of time series for a filter and interval."""

    def close(self):
        pass


class HttpMonitoringClient(MonitoringClient):
    """Monitoring v3 REST client built on httpx."""

    def __init__(
        self,
        config: ApiConfig,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.config = config
        self.token_provider = token_provider or (lambda: config.access_token)
        self._client = httpx.Client(
            base_url=config.base_url.rstrip("/"),
            timeout=config.timeout_s,
            transport=transport,
            headers={"accept": "application/json"},
        )

    def list_metric_descriptors(
        self,
        project_id: str,
        filter: str,
        page_token: str = ""
    ) -> DescriptorPage:
        params: List[Tuple[str, Any]] = [("filter", filter)]
        self._add_paging(params, page_token)

        data = self._get(f"/{project_resource(project_id)}/metricDescriptors", params)
        return DescriptorPage(
            descriptors=[MetricDescriptor.from_api(d) for d in data.get("metricDescriptors", [])],
            next_page_token=data.get("nextPageToken", ""),
        )

    def list_time_series(
        self,
        project_id: str,
        filter: str,
        start_time: datetime,
        end_time: datetime,
        aggregation: Optional[AggregationConfig] = None,
        page_token: str = ""
    ) -> TimeSeriesPage:
        params: List[Tuple[str, Any]] = [
            ("filter", filter),
            ("interval.startTime", format_timestamp(start_time)),
            ("interval.endTime", format_timestamp(end_time)),
        ]

        if aggregation is not None:
            params.append(("aggregation.alignmentPeriod", aggregation.alignment_period))
            params.append(("aggregation.crossSeriesReducer", aggregation.cross_series_reducer))
            for group_by in aggregation.group_by_fields:
                params.append(("aggregation.groupByFields", group_by))
            params.append(("aggregation.perSeriesAligner", aggregation.per_series_aligner))

        self._add_paging(params, page_token)

        data = self._get(f"/{project_resource(project_id)}/timeSeries", params)
        return TimeSeriesPage(
            time_series=[TimeSeries.from_api(ts) for ts in data.get("timeSeries", [])],
            next_page_token=data.get("nextPageToken", ""),
        )

    def close(self):
        self._client.close()

    def _add_paging(self, params: List[Tuple[str, Any]], page_token: str):
        if self.config.page_size:
            params.append(("pageSize", self.config.page_size))
        if page_token:
            params.append(("pageToken", page_token))

    def _get(self, path: str, params: List[Tuple[str, Any]]) -> Dict[str, Any]:
        headers = {}
        token = self.token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = self._client.get(path, params=params, headers=headers)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise MonitoringApiError(
                f"Monitoring API request {path} failed: {e.response.status_code} {e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise MonitoringApiError(f"Monitoring API request {path} failed: {e}") from e
        except ValueError as e:
            raise MonitoringApiError(f"Monitoring API returned invalid JSON for {path}: {e}") from e
