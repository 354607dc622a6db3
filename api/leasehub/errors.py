import logging
from typing import Any, Dict, List, Optional
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class WorkflowError(Exception):
    """Base for rejections that leave the contract untouched."""

    status_code = 400
    code: Optional[str] = None

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": self.message}
        if self.code:
            body["code"] = self.code
        body.update(self.extra)
        return body


class NotFoundError(WorkflowError):
    status_code = 404


class InputError(WorkflowError):
    pass


class StateGuardError(WorkflowError):
    code = "INVALID_STATUS"

    def __init__(self, message: str, current_status: str, **extra: Any):
        super().__init__(message, currentStatus=current_status, **extra)


class RequiredFieldsMissing(WorkflowError):
    status_code = 422
    code = "VALIDATION_REQUIRED_MISSING"

    def __init__(self, missing: List[dict]):
        keys = ", ".join(item["key"] for item in missing)
        super().__init__(f"Missing required contract fields: {keys}", missing=missing)
        self.missing = missing


class OccupancyExceeded(WorkflowError):
    code = "OCCUPANCY_EXCEEDED"

    def __init__(self, occupants: int, max_tenants: int):
        super().__init__(
            f"Number of occupants ({occupants}) exceeds the room limit ({max_tenants})",
            occupants=occupants,
            maxTenants=max_tenants,
        )


class RenewalConflict(WorkflowError):
    code = "RENEWAL_CONFLICT"

    def __init__(self, contract_id: int, date_range: str):
        super().__init__(
            f"Room already has contract {contract_id} covering {date_range}",
            conflictContractId=contract_id,
            conflictRange=date_range,
        )


class IdentityNotVerified(WorkflowError):
    code = "IDENTITY_NOT_VERIFIED"


class VersionConflict(WorkflowError):
    status_code = 409
    code = "VERSION_CONFLICT"

    def __init__(self, current_version: int):
        super().__init__(
            "Contract was modified by another request, reload and retry",
            currentVersion=current_version,
        )


class ProviderRejected(WorkflowError):
    """The eKYC provider answered with an error code; message is passed through."""

    code = "PROVIDER_REJECTED"


class ProviderUnavailable(WorkflowError):
    status_code = 502
    code = "PROVIDER_UNAVAILABLE"


def register_exception_handlers(app: FastAPI):

    @app.exception_handler(WorkflowError)
    async def workflow_error_handler(request: Request, exc: WorkflowError):
        return JSONResponse(content=exc.to_body(), status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(content={"message": "Internal server error"}, status_code=500)
