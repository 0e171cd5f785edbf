"""Google Sheets collaborator used by the puller and pusher.

The engine only depends on the :class:`SheetsClient` protocol: six range
addressed operations returning plain dictionaries.  :class:`GoogleSheetsClient`
implements it on top of the Sheets v4 REST API and owns the transport
concerns: per-call timeouts and exponential backoff for transient failures.
Higher level modules never see ``googleapiclient`` types.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

import google_auth_httplib2
import httplib2
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from sheetsync.errors import SheetsApiError, TransientIOError
from sheetsync.google_credentials import CredentialsFileInvalidError, load_service_account_data

logger = logging.getLogger(__name__)

SCOPES: Sequence[str] = ("https://www.googleapis.com/auth/spreadsheets",)
RETRIABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
VALUE_INPUT_OPTION = "RAW"

Cell = Any
Values = List[List[Cell]]


class SheetsClient(Protocol):
    """Range addressed operations the synchronisation engine relies on."""

    def get_data(self, resource_id: str, range_spec: str) -> Dict[str, Any]: ...

    def update_data(self, resource_id: str, range_spec: str, values: Values) -> Dict[str, Any]: ...

    def append_data(self, resource_id: str, range_spec: str, values: Values) -> Dict[str, Any]: ...

    def clear_data(self, resource_id: str, range_spec: str) -> Dict[str, Any]: ...

    def batch_update(self, resource_id: str, updates: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]: ...

    def format_cells(self, resource_id: str, requests: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]: ...


class SheetsCredentialsError(SheetsApiError):
    """Raised when the service account key cannot be used."""


def _http_status(exc: HttpError) -> int:
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(getattr(exc, "resp", None), "status", None)
    try:
        return int(status)
    except (TypeError, ValueError):
        return 0


class RetryPolicy:
    """Exponential backoff schedule: ``base * 2**attempt`` capped at ``maximum``."""

    def __init__(
        self,
        *,
        attempts: int = 5,
        base: float = 1.0,
        maximum: float = 32.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.attempts = attempts
        self.base = base
        self.maximum = maximum
        self._sleep = sleep

    def delay(self, attempt: int) -> float:
        return min(self.base * (2**attempt), self.maximum)

    def call(self, func: Callable[[], Any], description: str) -> Any:
        """Execute ``func`` retrying rate limits, server errors and network failures."""

        attempt = 0
        while True:
            try:
                return func()
            except HttpError as exc:
                status = _http_status(exc)
                if status not in RETRIABLE_STATUSES:
                    raise SheetsApiError(f"Sheets API {description} failed ({status}): {exc}") from exc
                failure: Exception = exc
                reason = f"HTTP {status}"
            except (OSError, httplib2.HttpLib2Error) as exc:
                failure = exc
                reason = type(exc).__name__

            attempt += 1
            if attempt >= self.attempts:
                raise TransientIOError(
                    f"Sheets API {description} failed after {attempt} attempts: {failure}"
                ) from failure
            delay = self.delay(attempt - 1)
            logger.warning(
                "Sheets API %s error (%s). Retrying in %ss (%d/%d)",
                description,
                reason,
                delay,
                attempt,
                self.attempts,
            )
            self._sleep(delay)


def build_service(credential_path: str | Path, *, timeout: float = 30.0):
    """Return an authorised Sheets v4 service using a service account key."""

    try:
        payload = load_service_account_data(Path(credential_path))
    except CredentialsFileInvalidError as exc:
        raise SheetsCredentialsError(str(exc)) from exc
    try:
        credentials = service_account.Credentials.from_service_account_info(payload, scopes=list(SCOPES))
    except ValueError as exc:
        raise SheetsCredentialsError(str(exc)) from exc
    http = google_auth_httplib2.AuthorizedHttp(credentials, http=httplib2.Http(timeout=timeout))
    return build("sheets", "v4", http=http, cache_discovery=False)


class GoogleSheetsClient:
    """Concrete :class:`SheetsClient` speaking to Google Sheets.

    ``httplib2`` connections are not thread safe, so unless an explicit
    ``service`` is injected each thread lazily builds its own service through
    ``service_factory``.
    """

    def __init__(
        self,
        *,
        service=None,
        service_factory: Optional[Callable[[], Any]] = None,
        retry: Optional[RetryPolicy] = None,
    ) -> None:
        if service is None and service_factory is None:
            raise ValueError("Either service or service_factory is required")
        self._service = service
        self._service_factory = service_factory
        self._local = threading.local()
        self._retry = retry or RetryPolicy()

    @classmethod
    def from_service_account(
        cls,
        credential_path: str | Path,
        *,
        timeout: float = 30.0,
        retry: Optional[RetryPolicy] = None,
    ) -> "GoogleSheetsClient":
        return cls(
            service_factory=lambda: build_service(credential_path, timeout=timeout),
            retry=retry,
        )

    def _values(self):
        return self._spreadsheets().values()

    def _spreadsheets(self):
        if self._service is not None:
            return self._service.spreadsheets()
        service = getattr(self._local, "service", None)
        if service is None:
            service = self._service_factory()
            self._local.service = service
        return service.spreadsheets()

    def _execute(self, request_builder: Callable[[], Any], description: str) -> Dict[str, Any]:
        result = self._retry.call(lambda: request_builder().execute(), description)
        return result if isinstance(result, dict) else {}

    # ------------------------------------------------------------------
    # SheetsClient protocol
    # ------------------------------------------------------------------
    def get_data(self, resource_id: str, range_spec: str) -> Dict[str, Any]:
        response = self._execute(
            lambda: self._values().get(spreadsheetId=resource_id, range=range_spec, majorDimension="ROWS"),
            "values.get",
        )
        return {
            "values": response.get("values", []),
            "range": response.get("range", range_spec),
            "majorDimension": response.get("majorDimension", "ROWS"),
        }

    def update_data(self, resource_id: str, range_spec: str, values: Values) -> Dict[str, Any]:
        response = self._execute(
            lambda: self._values().update(
                spreadsheetId=resource_id,
                range=range_spec,
                valueInputOption=VALUE_INPUT_OPTION,
                body={"values": values},
            ),
            "values.update",
        )
        return {
            "updatedRows": response.get("updatedRows", 0),
            "updatedColumns": response.get("updatedColumns", 0),
            "updatedCells": response.get("updatedCells", 0),
            "updatedRange": response.get("updatedRange", range_spec),
        }

    def append_data(self, resource_id: str, range_spec: str, values: Values) -> Dict[str, Any]:
        response = self._execute(
            lambda: self._values().append(
                spreadsheetId=resource_id,
                range=range_spec,
                valueInputOption=VALUE_INPUT_OPTION,
                insertDataOption="INSERT_ROWS",
                body={"values": values},
            ),
            "values.append",
        )
        updates = response.get("updates", {})
        return {
            "updatedRows": updates.get("updatedRows", 0),
            "updatedColumns": updates.get("updatedColumns", 0),
            "updatedCells": updates.get("updatedCells", 0),
            "updatedRange": updates.get("updatedRange", range_spec),
        }

    def clear_data(self, resource_id: str, range_spec: str) -> Dict[str, Any]:
        response = self._execute(
            lambda: self._values().clear(spreadsheetId=resource_id, range=range_spec, body={}),
            "values.clear",
        )
        return {"clearedRange": response.get("clearedRange", range_spec)}

    def batch_update(self, resource_id: str, updates: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        if not updates:
            return []
        body = {
            "valueInputOption": VALUE_INPUT_OPTION,
            "data": [
                {"range": update["range"], "values": update["values"], "majorDimension": "ROWS"}
                for update in updates
            ],
        }
        response = self._execute(
            lambda: self._values().batchUpdate(spreadsheetId=resource_id, body=body),
            "values.batchUpdate",
        )
        return list(response.get("responses", []))

    def format_cells(self, resource_id: str, requests: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        if not requests:
            return []
        response = self._execute(
            lambda: self._spreadsheets().batchUpdate(
                spreadsheetId=resource_id,
                body={"requests": list(requests)},
            ),
            "spreadsheets.batchUpdate",
        )
        return list(response.get("replies", []))


__all__ = [
    "GoogleSheetsClient",
    "RETRIABLE_STATUSES",
    "RetryPolicy",
    "SCOPES",
    "SheetsClient",
    "SheetsCredentialsError",
    "build_service",
]
