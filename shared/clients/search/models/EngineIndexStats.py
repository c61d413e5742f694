from pydantic import BaseModel


class EngineIndexStats(BaseModel):
    """Index stats as reported by the search engine."""

    number_of_documents: int = 0
    is_indexing: bool = False


class TaskInfo(BaseModel):
    """State of an asynchronous engine task (index writes are queued by the engine).

    Attributes:
        task_uid:  Engine task identifier.
        status:    Engine status string, e.g. "enqueued", "succeeded", "failed".
        error:     Error message of a failed task.
    """

    task_uid: str
    status: str
    error: str | None = None

    @property
    def is_finished(self) -> bool:
        return self.status in ("succeeded", "failed", "canceled")

    @property
    def is_success(self) -> bool:
        return self.status == "succeeded"
