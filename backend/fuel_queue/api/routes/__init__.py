from fuel_queue.api.routes import queue

__all__ = ["queue"]
