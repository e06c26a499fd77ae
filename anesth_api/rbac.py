"""Role checks for the two clinical roles."""

from fastapi import status

from .errors import api_error
from .models import Role

ROLE_LABELS = {
    Role.ANESTHETIST.value: "anesthésiste",
    Role.PHARMACIST.value: "pharmacien",
}


def require_role(user, *roles: Role) -> None:
    """Raise 403 unless ``user.role`` is one of ``roles`` (any role when empty)."""

    allowed = {role.value for role in roles} or set(ROLE_LABELS)
    if getattr(user, "role", None) not in allowed:
        labels = ", ".join(sorted(ROLE_LABELS[value] for value in allowed))
        raise api_error(
            status.HTTP_403_FORBIDDEN,
            "auth.forbidden",
            f"Action réservée au rôle: {labels}",
        )
