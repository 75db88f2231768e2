from .telegram import TelegramPublisher

__all__ = ["TelegramPublisher"]
