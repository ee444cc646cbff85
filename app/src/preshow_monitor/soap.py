import re
import uuid
from typing import Any

from .errors import ParseMiss, SoapFault, SoapNotAuthenticated, UnexpectedResponse
from .http_session import HttpResponse

UUID_RE = re.compile(
    r"([a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12})", re.IGNORECASE
)

NOT_AUTHENTICATED = "not authenticated"

SHOW_CONTROL_PATH = "/dc/dcp/json/v1/ShowControl"
SYSTEM_OVERVIEW_PATH = "/dc/dcp/json/v1/SystemOverview"

_ENVELOPE = (
    '<soapenv:Envelope xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/" '
    'xmlns:v1="http://www.doremilabs.com/dc/dcp/json/v1_0">'
    "<soapenv:Header/><soapenv:Body>"
    "<v1:{action}><sessionId>{session_id}</sessionId></v1:{action}>"
    "</soapenv:Body></soapenv:Envelope>"
)


def build_envelope(action: str, session_id: str) -> str:
    return _ENVELOPE.format(action=action, session_id=session_id)


def new_correlation_id() -> str:
    return str(uuid.uuid4())


def extract_soap_session_id(html: str) -> str:
    match = UUID_RE.search(html or "")
    if not match:
        raise ParseMiss("Could not extract SOAP session ID")
    return match.group(1)


def unwrap(res: HttpResponse, response_key: str, result_key: str) -> dict[str, Any]:
    """Return ``body[response_key][result_key]`` or raise the matching fault."""
    data = res.json()
    if not isinstance(data, dict):
        data = {}
    result = (data.get(response_key) or {}).get(result_key)
    if res.status == 200 and isinstance(result, dict) and result:
        return result
    fault = data.get("Fault")
    if isinstance(fault, dict):
        fault_string = str(fault.get("faultstring") or "")
        if fault_string == NOT_AUTHENTICATED:
            raise SoapNotAuthenticated(fault_string)
        raise SoapFault(fault_string)
    raise UnexpectedResponse(f"Unexpected SOAP response (HTTP {res.status})")
