"""Named context-prefix strategies.

A brain refers to one of these by name (`contextPrefix: "gentle_listener"`).
Each strategy is a pure function of the chat user and returns a line placed
before the system prompt of a new session.
"""

from typing import Callable

from brainbot.channels.base import ChatUser

ContextStrategy = Callable[[ChatUser], str]


def _display_name(user: ChatUser, fallback: str) -> str:
    return user.first_name or user.username or fallback


def greet_by_name(user: ChatUser) -> str:
    return f"You are chatting with {_display_name(user, 'a user')}."


def illustration_request(user: ChatUser) -> str:
    name = _display_name(user, "there")
    return f"User: {name} - Gather details about what they want illustrated."


def gentle_listener(user: ChatUser) -> str:
    return (
        f"Chatting with {user.first_name or 'a user'}. "
        "Remember: they may be vulnerable. Be gentle."
    )


CONTEXT_STRATEGIES: dict[str, ContextStrategy] = {
    "greet_by_name": greet_by_name,
    "illustration_request": illustration_request,
    "gentle_listener": gentle_listener,
}


def get_context_strategy(name: str | None) -> ContextStrategy | None:
    if not name:
        return None
    return CONTEXT_STRATEGIES.get(name)
