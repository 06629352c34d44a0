from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler


class SettlementError(Exception):
    """Base class for every error the settlement core returns to its callers."""

    code = 'settlement_error'
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message='', **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self):
        return self.message


class NotFound(SettlementError):
    code = 'not_found'
    http_status = status.HTTP_404_NOT_FOUND


class ConflictError(SettlementError):
    """Lost a concurrent create race. Re-fetch the winner; do not create again."""

    code = 'conflict'
    http_status = status.HTTP_409_CONFLICT


class StaleStateError(SettlementError):
    """The stored status no longer matches the status the caller read."""

    code = 'stale_state'
    http_status = status.HTTP_409_CONFLICT


class InvalidTransitionError(SettlementError):
    code = 'invalid_transition'
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, message='', *, event=None, current_status=None, **context):
        super().__init__(message, **context)
        self.event = event
        self.current_status = current_status


class InvalidEventError(SettlementError):
    code = 'invalid_event'
    http_status = status.HTTP_400_BAD_REQUEST


class DispatchFailure(SettlementError):
    code = 'dispatch_failure'
    http_status = status.HTTP_502_BAD_GATEWAY


def settlement_exception_handler(exc, context):
    """
    DRF exception handler: typed settlement errors become JSON bodies with a
    stable ``code``; everything else is left to DRF.
    """
    if isinstance(exc, SettlementError):
        body = {'detail': exc.message or exc.code, 'code': exc.code}
        if isinstance(exc, InvalidTransitionError):
            body['event'] = exc.event
            body['current_status'] = exc.current_status
        return Response(body, status=exc.http_status)

    return exception_handler(exc, context)
