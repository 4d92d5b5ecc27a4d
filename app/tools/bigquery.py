"""BigQuery query backend for ``client`` tools."""

import asyncio
from typing import Any

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import bigquery

from app.errors import BackendError, ValidationError
from app.models.tools import ClientConfig
from app.utils.logging import get_logger

logger = get_logger(__name__)


class BigQueryBackend:
    """Runs SQL queries with a cap on bytes billed."""

    name = "bigquery"

    def __init__(
        self,
        client: bigquery.Client | None = None,
        project: str | None = None,
        location: str = "US",
        maximum_bytes_billed: int = 1_000_000_000,
    ):
        """Initialize the backend.

        Args:
            client: Pre-built BigQuery client (created lazily from default credentials otherwise)
            project: Default project when the tool config names none
            location: Default job location
            maximum_bytes_billed: Default cost ceiling per query
        """
        self._client = client
        self.project = project
        self.location = location
        self.maximum_bytes_billed = maximum_bytes_billed

    def _get_client(self, project: str | None) -> bigquery.Client:
        if self._client is None:
            self._client = bigquery.Client(project=project or self.project)
        return self._client

    def _run_query(self, query: str, config: ClientConfig) -> dict[str, Any]:
        job_config = bigquery.QueryJobConfig(
            maximum_bytes_billed=config.maximum_bytes_billed or self.maximum_bytes_billed,
        )
        client = self._get_client(config.project)
        job = client.query(query, job_config=job_config, location=config.location or self.location)
        result = job.result()

        rows = [dict(row.items()) for row in result]
        return {
            "rows": rows,
            "totalRows": len(rows),
            "schema": {"fields": [{"name": field.name, "type": field.field_type} for field in result.schema]},
            "bytesProcessed": job.total_bytes_processed,
        }

    async def run(self, config: ClientConfig, args: dict[str, Any]) -> dict[str, Any]:
        query = args.get(config.query_argument)
        if not isinstance(query, str) or not query.strip():
            raise ValidationError(f"Query is required for BigQuery tool (argument {config.query_argument!r})")

        logger.info(f"Running BigQuery query ({len(query)} chars)")
        try:
            # The client library is blocking
            return await asyncio.to_thread(self._run_query, query, config)
        except (GoogleAPIError, GoogleAuthError) as e:
            message = getattr(e, "message", None) or str(e)
            raise BackendError(f"BigQuery Error: {message}") from e
