"""Application layer: engine services and the composition root."""

from chat_engine.application.engine import ChatEngine, chat_engine_lifespan

__all__ = ["ChatEngine", "chat_engine_lifespan"]
