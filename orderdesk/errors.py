# Overview: Domain error taxonomy shared by every checkout component.

"""
Every failure the pipeline surfaces to a caller is one of these types.

Each error carries a stable machine code, the HTTP-equivalent status a web
layer would answer with, a human-readable message and a details dict.
Storage failures keep the driver exception as __cause__ but never put its
text in the public message.
"""

from __future__ import annotations


class OrderDeskError(Exception):
    """Base class for all pipeline errors."""

    code = "ORDERDESK_ERROR"
    http_status = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self, expose_internal: bool = False) -> dict:
        payload = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return {"error": payload}


class ValidationError(OrderDeskError, ValueError):
    """400-level input problem caught before any write."""

    code = "VALIDATION_ERROR"
    http_status = 400


class IdentityConflict(OrderDeskError):
    """E-mail or tax id already bound to a different customer."""

    code = "IDENTITY_CONFLICT"
    http_status = 400


class ConcurrentRegistration(IdentityConflict):
    """
    A concurrent unit of work inserted the same e-mail or tax id first.

    Retryable: rerunning the unit of work observes the committed customer.
    """

    code = "CONCURRENT_REGISTRATION"


class InsufficientStock(OrderDeskError):
    """Requested quantity exceeds available stock."""

    code = "INSUFFICIENT_STOCK"
    http_status = 400


class ProductNotFound(OrderDeskError):
    code = "PRODUCT_NOT_FOUND"
    http_status = 404


class OrderNotFound(OrderDeskError):
    code = "ORDER_NOT_FOUND"
    http_status = 404


class InvalidTransition(OrderDeskError):
    """Status change not permitted by the order state machine."""

    code = "INVALID_TRANSITION"
    http_status = 400


class StorageFailure(OrderDeskError):
    """The unit of work could not commit. Nothing was persisted; safe to retry."""

    code = "STORAGE_FAILURE"
    http_status = 500

    PUBLIC_MESSAGE = "Could not process the order. Please try again."

    def to_dict(self, expose_internal: bool = False) -> dict:
        payload = {"code": self.code, "message": self.PUBLIC_MESSAGE}
        if expose_internal:
            payload["message"] = self.message
            if self.__cause__ is not None:
                payload["details"] = {"cause": str(self.__cause__)}
        return {"error": payload}


class CollaboratorFailure(OrderDeskError):
    """
    A post-commit collaborator (payment link, e-mail) failed.

    The order is already committed; callers report a degraded success.
    """

    code = "COLLABORATOR_FAILURE"
    http_status = 502

    def __init__(self, collaborator: str, message: str, details: dict | None = None):
        super().__init__(message, details)
        self.collaborator = collaborator

    def to_dict(self, expose_internal: bool = False) -> dict:
        payload = super().to_dict(expose_internal)
        payload["error"]["collaborator"] = self.collaborator
        return payload


class CustomerNotFound(OrderDeskError):
    code = "CUSTOMER_NOT_FOUND"
    http_status = 404
