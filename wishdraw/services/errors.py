from __future__ import annotations

from typing import Optional


class DrawError(RuntimeError):
    """Base for the expected, caller-recoverable Secret Santa failures.

    ``code`` is stable and is what the API layer maps to a response status.
    """

    code = "draw_error"
    default_message = "Secret Santa operation failed."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)


class GroupNotFound(DrawError):
    code = "group_not_found"
    default_message = "Group not found."


class NotAuthorized(DrawError):
    code = "not_authorized"
    default_message = "Only the owner or an admin can do this."


class NotMember(DrawError):
    code = "not_member"
    default_message = "You are not a member of this group."


class AlreadyDrawn(DrawError):
    code = "already_drawn"
    default_message = "Secret Santa has already been drawn for this group."


class NoDrawToReset(DrawError):
    code = "no_draw_to_reset"
    default_message = "No Secret Santa draw to reset."


class InsufficientParticipants(DrawError):
    code = "insufficient_participants"
    default_message = "Need at least 3 members to do a Secret Santa draw."


class Infeasible(DrawError):
    code = "infeasible"
    default_message = (
        "Could not create valid assignments with the current exclusion rules. "
        "Try removing some exclusions."
    )


class InvalidExclusion(DrawError):
    code = "invalid_exclusion"
    default_message = "A member cannot be excluded from themselves."
