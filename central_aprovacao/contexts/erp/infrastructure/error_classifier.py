from __future__ import annotations

import socket
import ssl
import urllib.error
from concurrent.futures import CancelledError
from dataclasses import dataclass

from central_aprovacao.contexts.erp.infrastructure.client import ErpTransportError


NETWORK = "network"
AUTH = "auth"
SERVER = "server"
UNKNOWN = "unknown"

ERROR_KINDS: tuple[str, ...] = (NETWORK, AUTH, SERVER, UNKNOWN)


@dataclass(frozen=True)
class ClassifiedError:
    kind: str
    status: int | None
    message: str


def _status_of(exc: BaseException) -> int | None:
    if isinstance(exc, ErpTransportError):
        return exc.status
    if isinstance(exc, urllib.error.HTTPError):
        return int(exc.code)
    return None


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, ErpTransportError):
        return exc.timed_out
    if isinstance(exc, (socket.timeout, TimeoutError, CancelledError)):
        return True
    if isinstance(exc, urllib.error.URLError):
        return isinstance(exc.reason, (socket.timeout, TimeoutError))
    return False


def _has_no_response(exc: BaseException) -> bool:
    if isinstance(exc, ErpTransportError):
        return exc.no_response
    if isinstance(exc, urllib.error.HTTPError):
        return False
    return isinstance(exc, (urllib.error.URLError, ConnectionError, ssl.SSLError, socket.gaierror))


def _message_for(exc: BaseException, status: int | None) -> str:
    raw = str(exc).strip()
    if raw:
        return raw[:300]
    if status is not None:
        return f"ERP HTTP {status}"
    return exc.__class__.__name__


def classify(exc: BaseException) -> ClassifiedError:
    """Map a transport failure to network/auth/server/unknown.

    Rules are checked in order; the first match wins.
    """
    status = _status_of(exc)
    message = _message_for(exc, status)

    if _is_timeout(exc):
        return ClassifiedError(NETWORK, status, message)
    if status is None and _has_no_response(exc):
        return ClassifiedError(NETWORK, None, message)
    if status in (401, 403):
        return ClassifiedError(AUTH, status, message)
    if status is not None and status >= 500:
        return ClassifiedError(SERVER, status, message)
    if status is not None and 400 <= status < 500:
        return ClassifiedError(SERVER, status, message)
    return ClassifiedError(UNKNOWN, status, message)


class ErrorClassifier:
    def classify(self, exc: BaseException) -> ClassifiedError:
        return classify(exc)
