from quakewatch.db.models.user import User

__all__ = ["User"]
