from .posts import AccountCreate, PostCreate, ScheduleRequest, RescheduleRequest

__all__ = ["AccountCreate", "PostCreate", "ScheduleRequest", "RescheduleRequest"]
