from __future__ import annotations


class RoadMasterError(Exception):
    pass


class NotFoundError(RoadMasterError):
    pass


class ConflictError(RoadMasterError):
    pass


class AuthenticationError(RoadMasterError):
    pass


class PermissionDeniedError(RoadMasterError):
    def __init__(self, permission: str, role: str = ""):
        self.permission = permission
        self.role = role
        who = f"Role '{role}'" if role else "User"
        super().__init__(f"{who} lacks permission '{permission}'.")


class DuplicateVersionError(RoadMasterError):
    pass
