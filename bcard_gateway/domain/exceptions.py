"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class InvalidAmountError(DomainException):
    """Amount is non-positive or cannot be parsed"""

    pass


class UserNotFoundError(DomainException):
    """User is unknown to the user directory"""

    pass


class FundingSourceNotFoundError(DomainException):
    """Funding source does not exist or belongs to another user"""

    pass


class CardNotFoundError(DomainException):
    """Virtual card does not exist or belongs to another user"""

    pass


class CaptureVendorError(DomainException):
    """Capture vendor was unreachable, timed out, or answered with garbage"""

    pass


class CardProvisioningError(DomainException):
    """Card issuing vendor failed to create or retrieve a card"""

    pass


class IllegalStateTransition(DomainException):
    """Settlement state machine was asked to make a transition it does not allow"""

    pass
