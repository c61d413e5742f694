import asyncio
from typing import Awaitable, Callable

from shared.helper.HelperConfig import HelperConfig
from shared.models.events import WorkerEvent

EventListener = Callable[[WorkerEvent], Awaitable[None]]

SUBSCRIBER_QUEUE_SIZE = 100


class EventBus:
    """Fan-out of worker lifecycle events.

    Listeners are awaited in registration order as part of ``publish``;
    subscribers (e.g. the server-sent events endpoint) receive events
    through their own bounded queue and lose the oldest event when full.
    """

    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()
        self._listeners: list[EventListener] = []
        self._queues: set[asyncio.Queue] = set()

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self._queues.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._queues.discard(queue)

    async def publish(self, event: WorkerEvent) -> None:
        self.logging.debug("Worker event %s for job %s.", event.event, event.job_id)
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception as e:
                self.logging.error("Event listener %r failed on '%s': %s", listener, event.event, e)
        for queue in list(self._queues):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(event)
