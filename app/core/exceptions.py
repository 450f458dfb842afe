class AccountNotFoundError(Exception):
    """The account row no longer exists."""

    def __init__(self, user_id: int):
        super().__init__(f"Account {user_id} not found")
        self.user_id = user_id


class MalformedAccountError(Exception):
    """Account data violates its own invariants (e.g. trial ends before it starts)."""

    def __init__(self, user_id: int, reason: str):
        super().__init__(f"Account {user_id} is malformed: {reason}")
        self.user_id = user_id
        self.reason = reason


class JobAlreadyRunningError(Exception):
    """Another invocation of a batch job currently holds its lock."""

    def __init__(self, name: str):
        super().__init__(f"Job '{name}' is already running")
        self.name = name
