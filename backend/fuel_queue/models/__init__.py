from fuel_queue.models.queue_entry import QueueRow

__all__ = ["QueueRow"]
