"""
Address validation classifier - maps vendor vocabularies onto one 4-state enum
"""
from enum import Enum
from typing import Optional


class AddressStatus(Enum):
    NOT_VALIDATED = 'not_validated'
    VERIFIED = 'verified'
    WARNING = 'warning'
    FAILED = 'failed'


# Keys are normalized: lowercase, single spaces
_VOCABULARY = {
    # Shopify shippingAddress.validationResultSummary
    'no_issues': AddressStatus.VERIFIED,
    'warning': AddressStatus.WARNING,
    'error': AddressStatus.FAILED,
    # ShipStation shipTo.addressVerified
    'address not yet validated': AddressStatus.NOT_VALIDATED,
    'address validated successfully': AddressStatus.VERIFIED,
    'address validation warning': AddressStatus.WARNING,
    'address validation failed': AddressStatus.FAILED,
    # Generic
    'not_validated': AddressStatus.NOT_VALIDATED,
    'not validated': AddressStatus.NOT_VALIDATED,
    'verified': AddressStatus.VERIFIED,
    'valid': AddressStatus.VERIFIED,
    'failed': AddressStatus.FAILED,
    'invalid': AddressStatus.FAILED,
}

_ISSUES = (AddressStatus.WARNING, AddressStatus.FAILED)


def classify(raw: Optional[str]) -> AddressStatus:
    """Map a raw vendor validation value to AddressStatus (unknown -> NOT_VALIDATED)"""
    if raw is None:
        return AddressStatus.NOT_VALIDATED
    key = ' '.join(str(raw).split()).lower()
    return _VOCABULARY.get(key, AddressStatus.NOT_VALIDATED)


def has_address_issue(order) -> bool:
    """True when the order's shipping address validated with a warning or failed.

    Accepts a SourceOrder, anything with a ``validation_status`` attribute,
    or a plain raw status string / None.
    """
    if order is None or isinstance(order, str):
        raw = order
    else:
        raw = getattr(order, 'validation_status', None)
    return classify(raw) in _ISSUES
