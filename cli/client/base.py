"""Base HTTP Client for the HubJobs admin API"""

from typing import Any

import httpx
from rich.console import Console
from rich.panel import Panel

console = Console()


class HubJobsError(Exception):
    """Raised when the admin API is unreachable or answers with an error envelope"""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


class APIClient:
    """HTTP client for the HubJobs admin API"""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: int = 30,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.default_headers = headers or {}
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            headers=self.default_headers,
            transport=transport,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.client.close()

    def _handle_response(self, response: httpx.Response) -> Any:
        """Unwrap the {ok, data} envelope, raising HubJobsError for error envelopes"""
        try:
            body = response.json()
        except ValueError:
            raise HubJobsError(
                f"API returned {response.status_code} with a non-JSON body",
                status_code=response.status_code,
            ) from None

        if response.is_success and body.get("ok", True):
            return body.get("data") if "ok" in body else body

        error = body.get("error") or {}
        message = error.get("message") or body.get("detail") or "Request failed"
        details = error.get("details") or {}

        lines = [f"[red]{message}[/red]"]
        for problem in details.get("errors", []):
            location = ".".join(str(part) for part in problem.get("loc", []))
            lines.append(f"[dim]{location}: {problem.get('msg')}[/dim]")
        console.print(Panel("\n".join(lines), title=f"API Error {response.status_code}"))

        raise HubJobsError(
            f"API Error {response.status_code}: {message}",
            status_code=response.status_code,
            details=details,
        )

    def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request below /v1 and unwrap the response envelope"""
        try:
            response = self.client.request(method, f"/v1{path}", params=params, json=json)
        except httpx.RequestError as e:
            console.print(f"[red]Connection error: {e}[/red]")
            raise HubJobsError(f"Connection failed: {e}") from None
        return self._handle_response(response)

    def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return self.request("GET", path, params=params)

    def post(
        self,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return self.request("POST", path, params=params, json=json)

    def patch(self, path: str, json: dict[str, Any] | None = None) -> Any:
        return self.request("PATCH", path, json=json)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)
