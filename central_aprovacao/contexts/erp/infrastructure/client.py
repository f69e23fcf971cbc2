from __future__ import annotations

import base64
import json
import socket
import ssl
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Mapping

from central_aprovacao.contexts.erp.domain.tenants import TenantConfig


class ErpTransportError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        body: str | None = None,
        timed_out: bool = False,
        no_response: bool = False,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body
        self.timed_out = bool(timed_out)
        self.no_response = bool(no_response)


@dataclass(frozen=True)
class ErpResponse:
    status: int
    body: str

    @property
    def ok(self) -> bool:
        return self.status in (200, 201)

    def json(self) -> object:
        if not self.body:
            return {}
        return json.loads(self.body)


def basic_auth_header(tenant: TenantConfig) -> str:
    raw = f"{tenant.username}:{tenant.password}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


def tenant_headers(tenant: TenantConfig) -> dict[str, str]:
    return {
        "Accept": "application/json",
        "Authorization": basic_auth_header(tenant),
    }


def build_query_url(tenant: TenantConfig, approver: str, numero: str | None = None) -> str:
    params = [("aprovador", approver)]
    if numero:
        params.append(("numero", numero))
    return f"{tenant.query_url}?{urllib.parse.urlencode(params)}"


_READ_CHUNK_BYTES = 16 * 1024


class ErpHttpClient:
    """Blocking JSON transport for the Protheus REST endpoints.

    Non-2xx answers to a GET raise ``ErpTransportError``; POST answers are
    returned as-is so the caller can surface the upstream status and body.

    ``timeout`` is a deadline for the whole request: the body is read in
    chunks and a backend that keeps trickling bytes past it is cut off as a
    timeout. urllib still applies ``timeout`` per socket operation, so the
    connect and a single stalled read are each bounded by it as well.
    """

    def __init__(self, *, verify_ssl: bool = True) -> None:
        self._context = None if verify_ssl else ssl._create_unverified_context()

    def get_json(self, url: str, *, headers: Mapping[str, str], timeout: float) -> object:
        response = self._send("GET", url, headers=headers, timeout=timeout)
        if not (200 <= response.status < 300):
            raise ErpTransportError(
                f"ERP HTTP {response.status}: {response.body[:200]}",
                status=response.status,
                body=response.body,
            )
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise ErpTransportError(
                "ERP retornou JSON invalido.",
                status=response.status,
                body=response.body[:200],
            ) from exc

    def post_json(
        self,
        url: str,
        payload: dict,
        *,
        headers: Mapping[str, str],
        timeout: float,
    ) -> ErpResponse:
        return self._send("POST", url, headers=headers, timeout=timeout, payload=payload)

    def _send(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str],
        timeout: float,
        payload: dict | None = None,
    ) -> ErpResponse:
        request_headers = dict(headers)
        data = None
        if payload is not None:
            request_headers["Content-Type"] = "application/json"
            data = json.dumps(payload, separators=(",", ":"), ensure_ascii=True).encode("utf-8")

        request = urllib.request.Request(url, data=data, headers=request_headers, method=method.upper())
        deadline = time.monotonic() + timeout
        try:
            with urllib.request.urlopen(request, timeout=timeout, context=self._context) as response:
                body = _read_body(response, deadline)
                return ErpResponse(status=int(response.status), body=body)
        except urllib.error.HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
            return ErpResponse(status=int(exc.code), body=error_body)
        except urllib.error.URLError as exc:
            reason = exc.reason
            timed_out = isinstance(reason, (socket.timeout, TimeoutError))
            raise ErpTransportError(
                f"Erro de conexao ERP: {reason}",
                timed_out=timed_out,
                no_response=True,
            ) from exc
        except (socket.timeout, TimeoutError) as exc:
            raise ErpTransportError("Timeout na requisicao ao ERP.", timed_out=True, no_response=True) from exc
        except (ConnectionError, ssl.SSLError) as exc:
            raise ErpTransportError(f"Erro de conexao ERP: {exc}", no_response=True) from exc


def _read_body(response, deadline: float) -> str:
    chunks: list[bytes] = []
    while True:
        if time.monotonic() > deadline:
            raise ErpTransportError("Timeout na requisicao ao ERP.", timed_out=True, no_response=True)
        chunk = response.read(_READ_CHUNK_BYTES)
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks).decode("utf-8", errors="replace")
