"""
PrintDesk Errors
================

Every domain failure is a PrintDeskError subclass carrying a short
user-facing message and the HTTP status the JSON API answers with.
"""


class PrintDeskError(Exception):
    """Base class for all PrintDesk domain errors"""

    status_code = 400
    message = 'Request failed'

    def __init__(self, detail=None, **context):
        self.detail = detail or self.message
        self.context = context
        super().__init__(self.detail)

    @property
    def code(self):
        return type(self).__name__

    def to_dict(self):
        payload = {'success': False, 'error': self.message, 'code': self.code}
        if self.detail != self.message:
            payload['detail'] = self.detail
        return payload


class InvalidRequest(PrintDeskError):
    status_code = 400
    message = 'Invalid request'


class DuplicateSubmission(PrintDeskError):
    status_code = 409
    message = 'This order was already submitted'

    def __init__(self, detail=None, existing_order_id=None, **context):
        super().__init__(detail, **context)
        self.existing_order_id = existing_order_id

    def to_dict(self):
        payload = super().to_dict()
        if self.existing_order_id:
            payload['existing_order_id'] = self.existing_order_id
        return payload


class NotFound(PrintDeskError):
    status_code = 404
    message = 'Not found'


class StoreUnavailable(PrintDeskError):
    status_code = 503
    message = 'Order storage is unavailable, please retry'


class Unauthorized(PrintDeskError):
    status_code = 401
    message = 'You do not have admin access'


class InvalidOtp(PrintDeskError):
    status_code = 401
    message = 'Invalid verification code'


class Expired(PrintDeskError):
    status_code = 401
    message = 'Your admin session has expired'


class Revoked(PrintDeskError):
    status_code = 403
    message = 'Your admin access has been revoked'


class AlreadyExists(PrintDeskError):
    status_code = 409
    message = 'Already exists'


class NotAllowed(PrintDeskError):
    status_code = 403
    message = 'Operation not allowed'


class InvalidApiKey(PrintDeskError):
    status_code = 401
    message = 'Invalid or missing API key'


SESSION_ERRORS = (Unauthorized, Expired, Revoked)
