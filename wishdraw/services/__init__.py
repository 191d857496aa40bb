from wishdraw.services.assignment import solve
from wishdraw.services.errors import (
    AlreadyDrawn,
    DrawError,
    GroupNotFound,
    Infeasible,
    InsufficientParticipants,
    InvalidExclusion,
    NoDrawToReset,
    NotAuthorized,
    NotMember,
)

__all__ = [
    "AlreadyDrawn",
    "DrawError",
    "GroupNotFound",
    "Infeasible",
    "InsufficientParticipants",
    "InvalidExclusion",
    "NoDrawToReset",
    "NotAuthorized",
    "NotMember",
    "solve",
]
