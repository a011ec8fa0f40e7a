from database.repositories.base import BaseRepository
from database.repositories.user import UserRepository
from database.repositories.preference import PreferenceRepository
from database.repositories.notification import NotificationRepository
from database.repositories.delivery_log import DeliveryLogRepository
from database.repositories.queue import QueueRepository
from database.repositories.template import TemplateRepository

__all__ = [
    'BaseRepository',
    'UserRepository',
    'PreferenceRepository',
    'NotificationRepository',
    'DeliveryLogRepository',
    'QueueRepository',
    'TemplateRepository',
]
