from . import ping, solutions, tickets, users

__all__ = ["ping", "solutions", "tickets", "users"]
