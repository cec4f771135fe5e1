"""
Maps upstream transport failures onto client-facing gateway errors.
"""

from typing import Dict, Type

from shared.errors import (
    BackendTimeoutError,
    BackendUnavailableError,
    BadGatewayError,
    GatewayError,
)
from shared.logging import get_logger
from service_gateway.app.proxy.upstream_client import FailureKind, UpstreamFailure


FAILURE_ERRORS: Dict[FailureKind, Type[GatewayError]] = {
    FailureKind.REFUSED: BackendUnavailableError,
    FailureKind.TIMEOUT: BackendTimeoutError,
    FailureKind.OTHER: BadGatewayError,
}

SANITIZED_REASONS: Dict[FailureKind, str] = {
    FailureKind.REFUSED: "Connection refused",
    FailureKind.TIMEOUT: "Request timed out",
    FailureKind.OTHER: "Upstream transport error",
}


class FailureTranslator:
    """Turns an ``UpstreamFailure`` into the ``GatewayError`` to answer with.

    With ``verbose`` set, log lines carry the error code, duration and target
    URL; otherwise only the sanitized reason is logged.
    """

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.logger = get_logger("gateway.proxy")

    def translate(self, failure: UpstreamFailure, method: str = "", path: str = "") -> GatewayError:
        error_cls = FAILURE_ERRORS[failure.kind]

        if self.verbose:
            self.logger.error(
                "Proxy error",
                method=method,
                path=path,
                kind=failure.kind.value,
                message=failure.detail,
                code=failure.code,
                url=failure.target,
                duration_ms=failure.duration_ms,
            )
        else:
            self.logger.error("Proxy error", method=method, path=path, message=self.reason(failure))

        return error_cls(
            details={
                "code": failure.code,
                "duration_ms": failure.duration_ms,
                "target": failure.target,
            }
        )

    def reason(self, failure: UpstreamFailure) -> str:
        """Describe a failure at the verbosity allowed for this deployment."""
        if self.verbose:
            return failure.detail or failure.code
        return SANITIZED_REASONS[failure.kind]
