"""Authorization policy: pure predicates over role, ownership and status.

The document store consults these before every mutation; nothing else in
the package re-implements a role check. Roles may be passed as ``Role``
members or their plain string values.
"""
from .models import Role, DocumentStatus


REVIEWER_ROLES = frozenset({Role.ACCOUNTANT, Role.ADMIN})
EDITOR_ROLES = frozenset({Role.ACCOUNTANT, Role.ADMIN})
FULL_VISIBILITY_ROLES = frozenset({Role.ACCOUNTANT, Role.ADMIN, Role.OWNER})


def can_approve(role: Role, status: DocumentStatus) -> bool:
    """Approve or reject is allowed for reviewers on pending documents"""
    return Role(role) in REVIEWER_ROLES and DocumentStatus(status) == DocumentStatus.PENDING


def can_edit(role: Role, is_owner: bool) -> bool:
    return is_owner or Role(role) in EDITOR_ROLES


def can_delete(role: Role, is_owner: bool) -> bool:
    return is_owner or Role(role) == Role.ADMIN


def can_view(role: Role, is_owner: bool) -> bool:
    # Owner role sees everything, same as reviewers (see DESIGN.md)
    return is_owner or Role(role) in FULL_VISIBILITY_ROLES


def initial_status(role: Role) -> DocumentStatus:
    """Status assigned at submission: reviewers are auto-approved"""
    if Role(role) in REVIEWER_ROLES:
        return DocumentStatus.APPROVED
    return DocumentStatus.PENDING
