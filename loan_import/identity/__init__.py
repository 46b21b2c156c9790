"""Identity resolution for borrowers, guarantors, leads and loan types."""

from loan_import.identity.leads import resolve_lead_mapping
from loan_import.identity.loan_types import LoanTypeResolver
from loan_import.identity.names import is_valid_phone, normalize_name, should_update_phone
from loan_import.identity.resolver import BorrowerIdentity, IdentityResolver, ResolverStats

__all__ = [
    "BorrowerIdentity",
    "IdentityResolver",
    "LoanTypeResolver",
    "ResolverStats",
    "is_valid_phone",
    "normalize_name",
    "resolve_lead_mapping",
    "should_update_phone",
]
