"""Error taxonomy of the indexing and retrieval pipeline.

Validation errors are raised at the API boundary and never reach a job.
Everything raised while a job runs is caught at the worker's execution
boundary and recorded on the job instead of propagating.
"""


class ValidationError(ValueError):
    """Malformed input: cron expression, filter rule, index or document payload."""


class CronValidationError(ValidationError):
    """A cron expression that cannot be parsed as a five-field expression."""

    def __init__(self, expression: str, reason: str | None = None) -> None:
        self.expression = expression
        message = f"Invalid cron expression {expression!r}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class NotFoundError(LookupError):
    """An entity referenced by id or name does not exist in the store."""

    def __init__(self, entity: str, key: str) -> None:
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} '{key}' not found")


class PartialIndexFailure(Exception):
    """One enabled index failed to accept a batch while the others may have succeeded."""

    def __init__(self, index_name: str, document_ids: list[str], cause: BaseException) -> None:
        self.index_name = index_name
        self.document_ids = document_ids
        self.cause = cause
        super().__init__(
            f"Index '{index_name}' rejected {len(document_ids)} document(s): {cause}"
        )


class IndexRetractionError(Exception):
    """A document could not be removed from every enabled index, so it was kept in the store."""

    def __init__(self, document_id: str, failed_indexes: list[str]) -> None:
        self.document_id = document_id
        self.failed_indexes = failed_indexes
        super().__init__(
            f"Document '{document_id}' could not be retracted from index(es) "
            f"{', '.join(failed_indexes)}; canonical record kept"
        )


class JobExecutionFailure(Exception):
    """An indexing job aborted with an error."""

    def __init__(self, job_id: str, message: str) -> None:
        self.job_id = job_id
        super().__init__(message)


class JobCancelledError(Exception):
    """Raised inside the batch loop once the job's cancel token is set."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job '{job_id}' was cancelled")


class WorkerBusyError(RuntimeError):
    """A job was requested while another one occupies the single execution slot."""

    def __init__(self, active_job_id: str | None) -> None:
        self.active_job_id = active_job_id
        super().__init__(f"Another index job is running ({active_job_id})")


class ClientRequestError(Exception):
    """A backend answered a request with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class SearchTaskError(ClientRequestError):
    """An asynchronous search engine task failed or did not finish in time."""
