"""Remote receiver service: applies payloads sent by a sync peer."""

from fieldsync.receiver.app import create_receiver_app
from fieldsync.receiver.config import ReceiverSettings

__all__ = ["create_receiver_app", "ReceiverSettings"]
