from app.services.state_machine import (
    ConversationState,
    InvalidTransitionError,
    can_transition,
    transition,
)

__all__ = ["ConversationState", "InvalidTransitionError", "can_transition", "transition"]
