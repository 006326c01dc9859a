"""Action correlation IDs for tracing one user action across log lines.

Every user-triggered action (cancel, complete, request, respond) binds a
short ID in a context variable. Log records and outgoing API requests
(``X-Request-ID``) carry it, so all lines for one click can be grepped.
"""

import uuid
from contextvars import ContextVar

# Context variable for storing the current action ID
action_id_var: ContextVar[str] = ContextVar("action_id", default="")


def new_action_id() -> str:
    """Generate an action ID and bind it to the current context.

    Returns:
        The new 12-character action ID
    """
    action_id = uuid.uuid4().hex[:12]
    action_id_var.set(action_id)
    return action_id


def get_action_id() -> str:
    """Get current action ID from context.

    Returns:
        Current action ID, or "no-action-id" if not set
    """
    action_id = action_id_var.get()
    return action_id if action_id else "no-action-id"
