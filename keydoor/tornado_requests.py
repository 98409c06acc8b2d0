import ssl
from typing import Any, Dict, Optional, Union

from tornado import httpclient

from keydoor import json
from keydoor.config import DEFAULT_TIMEOUT


class TornadoResponse:
    def __init__(self, code: int, body: Union[str, bytes, None]):
        self.status_code = code
        self.body = body

    def json(self) -> Any:
        if not self.body:
            raise ValueError("empty response body")
        return json.loads(self.body)


async def request(
    method: str,
    url: str,
    data: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> TornadoResponse:
    """Send an HTTP request without raising on failure.

    Transport failures are reported with the status code 599, as tornado does
    for its own connection errors.
    """
    http_client = httpclient.AsyncHTTPClient()

    # Convert dict to JSON before sending
    body: Optional[str] = None
    if data is not None:
        body = json.dumps(data)
        if headers is None:
            headers = {}
        if "Content-Type" not in headers:
            headers["Content-Type"] = "application/json"

    try:
        req = httpclient.HTTPRequest(
            url=url,
            method=method,
            body=body,
            headers=headers,
            request_timeout=timeout,
            allow_nonstandard_methods=True,
        )
        response = await http_client.fetch(req)

    except httpclient.HTTPError as e:
        if e.response is None:
            return TornadoResponse(599 if e.code == 599 else 500, str(e))
        return TornadoResponse(e.response.code, e.response.body)
    except ConnectionError as e:
        return TornadoResponse(599, f"Connection error: {str(e)}")
    except ssl.SSLError as e:
        return TornadoResponse(599, f"SSL connection error: {str(e)}")
    except OSError as e:
        return TornadoResponse(599, f"TCP/IP Connection error: {str(e)}")
    if response is None:
        return TornadoResponse(599, "Unspecified failure in tornado (empty http response)")
    return TornadoResponse(response.code, response.body)
