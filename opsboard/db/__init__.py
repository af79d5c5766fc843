# Storage package initializer
__all__ = ['ActivityStore']

from .activity_store import ActivityStore
