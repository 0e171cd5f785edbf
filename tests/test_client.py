from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, List

import httplib2
import pytest
from googleapiclient.errors import HttpError

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sheetsync.client import GoogleSheetsClient, RetryPolicy
from sheetsync.errors import SheetsApiError, TransientIOError


def _http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": status}), b'{"error": {"message": "boom"}}')


class _FakeRequest:
    def __init__(self, callback):
        self._callback = callback

    def execute(self):
        return self._callback()


class _FakeValues:
    def __init__(self, service: "_FakeService") -> None:
        self._service = service

    def get(self, **kwargs):
        return _FakeRequest(lambda: self._service._handle("get", kwargs))

    def update(self, **kwargs):
        return _FakeRequest(lambda: self._service._handle("update", kwargs))

    def append(self, **kwargs):
        return _FakeRequest(lambda: self._service._handle("append", kwargs))

    def clear(self, **kwargs):
        return _FakeRequest(lambda: self._service._handle("clear", kwargs))

    def batchUpdate(self, **kwargs):  # noqa: N802 - API compatibility
        return _FakeRequest(lambda: self._service._handle("values.batchUpdate", kwargs))


class _FakeSpreadsheets:
    def __init__(self, service: "_FakeService") -> None:
        self._service = service

    def values(self) -> _FakeValues:
        return _FakeValues(self._service)

    def batchUpdate(self, **kwargs):  # noqa: N802 - API compatibility
        return _FakeRequest(lambda: self._service._handle("batchUpdate", kwargs))


class _FakeService:
    def __init__(self, responses: Dict[str, Any] | None = None, failures: List[Exception] | None = None) -> None:
        self.responses = responses or {}
        self.failures = list(failures or [])
        self.calls: List[tuple[str, Dict[str, Any]]] = []

    def spreadsheets(self) -> _FakeSpreadsheets:
        return _FakeSpreadsheets(self)

    def _handle(self, method: str, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append((method, kwargs))
        if self.failures:
            raise self.failures.pop(0)
        return self.responses.get(method, {})


def _client(service: _FakeService, sleeps: List[float] | None = None, attempts: int = 3) -> GoogleSheetsClient:
    recorder = sleeps if sleeps is not None else []
    return GoogleSheetsClient(service=service, retry=RetryPolicy(attempts=attempts, base=0.5, sleep=recorder.append))


def test_get_data_returns_values_and_range() -> None:
    service = _FakeService({"get": {"values": [["id"], ["1"]], "range": "Sheet1!A1:Z2"}})

    data = _client(service).get_data("sheet", "Sheet1!A:Z")

    assert data == {"values": [["id"], ["1"]], "range": "Sheet1!A1:Z2", "majorDimension": "ROWS"}
    assert service.calls[0][1]["spreadsheetId"] == "sheet"


def test_get_data_without_values_returns_empty_matrix() -> None:
    assert _client(_FakeService()).get_data("sheet", "A:Z")["values"] == []


def test_update_uses_raw_input_and_reports_counts() -> None:
    service = _FakeService({"update": {"updatedRows": 2, "updatedCells": 4, "updatedRange": "Sheet1!A1:B2"}})

    result = _client(service).update_data("sheet", "Sheet1!A:Z", [["a", "b"], ["1", "2"]])

    method, kwargs = service.calls[0]
    assert method == "update"
    assert kwargs["valueInputOption"] == "RAW"
    assert kwargs["body"] == {"values": [["a", "b"], ["1", "2"]]}
    assert result["updatedRows"] == 2
    assert result["updatedColumns"] == 0


def test_append_inserts_rows() -> None:
    service = _FakeService({"append": {"updates": {"updatedRows": 1, "updatedRange": "Sheet1!A5:B5"}}})

    result = _client(service).append_data("sheet", "Sheet1!A:Z", [["x", "y"]])

    assert service.calls[0][1]["insertDataOption"] == "INSERT_ROWS"
    assert result["updatedRange"] == "Sheet1!A5:B5"


def test_batch_update_and_format_cells_skip_empty_requests() -> None:
    service = _FakeService({"values.batchUpdate": {"responses": [{"updatedRows": 1}]}, "batchUpdate": {"replies": [{}]}})
    client = _client(service)

    assert client.batch_update("sheet", []) == []
    assert client.format_cells("sheet", []) == []
    assert client.batch_update("sheet", [{"range": "Sheet1!2:2", "values": [["a"]]}]) == [{"updatedRows": 1}]
    assert client.format_cells("sheet", [{"repeatCell": {}}]) == [{}]
    assert [method for method, _ in service.calls] == ["values.batchUpdate", "batchUpdate"]


def test_transient_errors_are_retried_with_exponential_backoff() -> None:
    sleeps: List[float] = []
    service = _FakeService(
        {"clear": {"clearedRange": "Sheet1!A1:Z9"}},
        failures=[_http_error(429), OSError("reset")],
    )

    result = _client(service, sleeps).clear_data("sheet", "Sheet1!A:Z")

    assert result == {"clearedRange": "Sheet1!A1:Z9"}
    assert sleeps == [0.5, 1.0]
    assert len(service.calls) == 3


def test_exhausted_retries_raise_transient_io_error() -> None:
    sleeps: List[float] = []
    service = _FakeService(failures=[_http_error(503)] * 3)

    with pytest.raises(TransientIOError):
        _client(service, sleeps).get_data("sheet", "A:Z")

    assert len(service.calls) == 3
    assert len(sleeps) == 2


def test_client_errors_are_not_retried() -> None:
    sleeps: List[float] = []
    service = _FakeService(failures=[_http_error(400)])

    with pytest.raises(SheetsApiError) as excinfo:
        _client(service, sleeps).get_data("sheet", "Bad!!")

    assert "400" in str(excinfo.value)
    assert sleeps == []
    assert len(service.calls) == 1


def test_backoff_delay_is_capped() -> None:
    policy = RetryPolicy(base=1.0, maximum=5.0)
    assert [policy.delay(attempt) for attempt in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_service_factory_is_called_once_per_thread() -> None:
    built: List[_FakeService] = []

    def factory() -> _FakeService:
        service = _FakeService({"get": {"values": []}})
        built.append(service)
        return service

    client = GoogleSheetsClient(service_factory=factory, retry=RetryPolicy(sleep=lambda _: None))
    client.get_data("sheet", "A:Z")
    client.get_data("sheet", "A:Z")

    assert len(built) == 1


def test_client_requires_a_service_source() -> None:
    with pytest.raises(ValueError):
        GoogleSheetsClient()
