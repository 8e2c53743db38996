"""
Error taxonomy shared by the workflow services.

Input problems keep using Django's ``ValidationError``. The workflow errors
subclass it so form and view code that already catches ``ValidationError``
keeps working; authorization failures subclass ``PermissionDenied``.
"""
from django.core.exceptions import PermissionDenied, ValidationError


class WorkflowError(ValidationError):
    default_code = 'workflow'

    def __init__(self, message, code=None, params=None, effects=None):
        super().__init__(message, code=code or self.default_code, params=params)
        self.effects = list(effects or [])


class BusinessRuleError(WorkflowError):
    default_code = 'business_rule'


class StateConflictError(WorkflowError):
    default_code = 'state_conflict'


class DuplicateError(WorkflowError):
    default_code = 'duplicate'


class InsufficientFundsError(BusinessRuleError):
    default_code = 'insufficient_funds'

    def __init__(self, message, *, requested, available, effects=None):
        super().__init__(message, effects=effects)
        self.requested = requested
        self.available = available


class AuthorizationError(PermissionDenied):
    def __init__(self, message, effects=None):
        super().__init__(message)
        self.message = message
        self.effects = list(effects or [])

    def __str__(self):
        return self.message
