class PreshowError(Exception):
    """Base class for failures talking to a playback server."""


class TransportError(PreshowError):
    """Connection failure or timeout. Never changes authentication state."""


class AuthRejected(PreshowError):
    """Every vendor login flow was tried and none was accepted."""


class SoapFault(PreshowError):
    def __init__(self, fault_string: str) -> None:
        super().__init__(f"SOAP Fault: {fault_string}")
        self.fault_string = fault_string


class SoapNotAuthenticated(SoapFault):
    pass


class UnexpectedResponse(PreshowError):
    pass


class ParseMiss(PreshowError):
    """Expected markup (SOAP session id, playlist rows) was not found."""
