"""Exception hierarchy for the storefront service.

User-facing messages are safe to return to clients. Technical details are
logged through structlog and never leave the process.
"""

from typing import Any, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)


class ShopError(Exception):
    """Base exception for storefront business errors.

    Args:
        user_message: Message that can be shown to the user as is.
        internal_details: Optional technical context, logged only.
    """

    status_code = 400

    def __init__(self, user_message: str, *, internal_details: Optional[str] = None) -> None:
        super().__init__(user_message)
        self.user_message = user_message

        if internal_details:
            logger.error(
                "shop_error",
                error_type=self.__class__.__name__,
                user_message=user_message,
                internal_details=internal_details,
            )

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.user_message}


class ValidationError(ShopError):
    """Input rejected before any write happened."""

    status_code = 400


class NotFoundError(ShopError):
    status_code = 404


class SlugExistsError(ShopError):
    status_code = 409


class InsufficientStockError(ShopError):
    """Requested quantities exceed available stock.

    ``issues`` holds one entry per offending line item with the product id,
    name, requested and available quantities.
    """

    status_code = 409

    def __init__(self, user_message: str, *, issues: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(user_message)
        self.issues = issues or []

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.user_message, "issues": self.issues}


class CheckoutStateError(ShopError):
    status_code = 409


class BackendError(ShopError):
    """A backend call failed. The message is always generic."""

    status_code = 503
