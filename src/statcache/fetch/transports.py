"""Primary and secondary HTTP transport implementations.

Each transport turns its library's exceptions, and requests it cannot
encode, into a TransportError at the boundary.
"""

from dataclasses import dataclass, field
from typing import Protocol

import httpx
import requests

from statcache.errors import TransportError
from statcache.fetch.classify import classify_exception
from statcache.fetch.models import FetchErrorClass, Request, TransportMethod


@dataclass(frozen=True)
class TransportResponse:
    """Raw HTTP response. Header names are lower-cased."""

    status_code: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    reason: str = ""


class Transport(Protocol):
    """Sends one request and returns whatever HTTP response came back.

    Raises:
        TransportError: When no HTTP response was received.
    """

    method: TransportMethod

    def send(self, request: Request, timeout: float) -> TransportResponse: ...


class HttpxTransport:
    """Primary transport built on httpx."""

    method = TransportMethod.PRIMARY

    def __init__(self, transport: httpx.BaseTransport | None = None) -> None:
        """Initialize the transport.

        Args:
            transport: Optional httpx transport (e.g. httpx.MockTransport in tests).
        """
        self._transport = transport

    def send(self, request: Request, timeout: float) -> TransportResponse:
        try:
            with httpx.Client(
                timeout=timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = client.request(
                    request.method,
                    request.url,
                    headers=request.headers,
                    content=request.body,
                )
                return TransportResponse(
                    status_code=response.status_code,
                    body=response.content,
                    headers={k.lower(): v for k, v in response.headers.items()},
                    reason=response.reason_phrase,
                )
        except httpx.TimeoutException as e:
            msg = f"Request timed out: {e}"
            raise TransportError(msg, FetchErrorClass.TIMEOUT) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            msg = f"Connection failed: {e}"
            raise TransportError(msg, classify_exception(e)) from e
        except (ValueError, TypeError) as e:
            msg = f"Invalid request: {e}"
            raise TransportError(msg, FetchErrorClass.UNKNOWN) from e


class RequestsTransport:
    """Secondary transport built on requests.

    Only used when the primary transport cannot reach the server at all.
    """

    method = TransportMethod.SECONDARY

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session = session

    def send(self, request: Request, timeout: float) -> TransportResponse:
        session = self._session or requests.Session()
        try:
            response = session.request(
                request.method,
                request.url,
                headers=request.headers,
                data=request.body,
                timeout=timeout,
                allow_redirects=True,
            )
        except requests.Timeout as e:
            msg = f"Request timed out: {e}"
            raise TransportError(msg, FetchErrorClass.TIMEOUT) from e
        except requests.RequestException as e:
            msg = f"Connection failed: {e}"
            raise TransportError(msg, classify_exception(e)) from e
        except (ValueError, TypeError) as e:
            msg = f"Invalid request: {e}"
            raise TransportError(msg, FetchErrorClass.UNKNOWN) from e
        finally:
            if self._session is None:
                session.close()

        return TransportResponse(
            status_code=response.status_code,
            body=response.content,
            headers={k.lower(): v for k, v in response.headers.items()},
            reason=response.reason or "",
        )
