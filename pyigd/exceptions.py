from typing import Dict, Type


class IGDError(Exception):
    """Base class for every error raised by pyigd"""


# parsing


class ParseError(IGDError):
    pass


class MalformedXMLError(ParseError):
    pass


class ServiceNotFoundError(ParseError):
    pass


class MissingFieldError(ParseError):
    def __init__(self, field: str, action: str = None):
        self.field = field
        self.action = action
        where = f" in {action} response" if action else ""
        super().__init__(f"Missing required field {field}{where}")


# discovery


class SearchError(IGDError):
    pass


class SearchTimeoutError(SearchError):
    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"No UPnP enabled IGD answered within {timeout} seconds")


class SearchNetworkError(SearchError):
    pass


class InvalidDescriptorError(SearchError):
    """
    The device description was fetched but does not describe a usable IGD
    """


# control requests


class RequestError(IGDError):
    """Base class for errors raised by gateway operations"""


class TransportError(RequestError):
    pass


class ConnectionFailedError(TransportError):
    pass


class TransportTimeoutError(TransportError):
    pass


class UnexpectedStatusError(TransportError):
    def __init__(self, status: int, url: str = None):
        self.status = status
        self.url = url
        super().__init__(f"Unexpected HTTP status {status} from {url}")


class InvalidResponseError(RequestError):
    """
    The gateway answered, but not with something that decodes into the expected result
    """


class FaultError(RequestError):
    """
    A fault reported by the gateway

    code - UPnP error code from the fault detail
    message - UPnP error description from the fault detail
    """

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(f"UPnP error {code}: {message}")


class ActionNotSupportedError(FaultError):
    pass


class InvalidArgumentsError(FaultError):
    pass


class UnauthorizedError(FaultError):
    pass


class SpecifiedArrayIndexInvalidError(FaultError):
    pass


class NoSuchEntryInArrayError(FaultError):
    pass


class ConflictInMappingEntryError(FaultError):
    pass


class SamePortValuesRequiredError(FaultError):
    pass


class OnlyPermanentLeasesSupportedError(FaultError):
    pass


class NoPortMapsAvailableError(FaultError):
    pass


FAULT_ERRORS: Dict[int, Type[FaultError]] = {
    401: ActionNotSupportedError,
    402: InvalidArgumentsError,
    606: UnauthorizedError,
    713: SpecifiedArrayIndexInvalidError,
    714: NoSuchEntryInArrayError,
    718: ConflictInMappingEntryError,
    724: SamePortValuesRequiredError,
    725: OnlyPermanentLeasesSupportedError,
    728: NoPortMapsAvailableError,
}


def fault_error(code: int, message: str) -> FaultError:
    """
    Returns the FaultError subclass instance matching a UPnP error code
    Unknown codes get a plain FaultError
    """

    return FAULT_ERRORS.get(code, FaultError)(code, message)
