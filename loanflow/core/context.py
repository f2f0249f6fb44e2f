import contextvars

_group_id: contextvars.ContextVar[str] = contextvars.ContextVar("group_id", default="-")
_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")


def set_group_id(group_id: str) -> None:
    _group_id.set(group_id)


def get_group_id() -> str:
    return _group_id.get()


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_request_id() -> str:
    return _request_id.get()


def clear_context() -> None:
    _group_id.set("-")
    _request_id.set("-")
