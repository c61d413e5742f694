from datetime import datetime

from shared.errors import CronValidationError, NotFoundError
from shared.helper import cron
from shared.helper.HelperConfig import HelperConfig
from shared.helper.time_helper import ensure_utc, utcnow
from shared.models.schedule import Schedule, ScheduleConfig, ScheduleView
from shared.store.DocumentStoreInterface import DocumentStoreInterface


class ScheduleRegistry:
    """CRUD and due-time computation for recurring index schedules.

    Cron expressions are validated before anything is written; a schedule
    with a malformed expression never reaches the store.
    """

    def __init__(self, helper_config: HelperConfig, store: DocumentStoreInterface) -> None:
        self.logging = helper_config.get_logger()
        self._store = store

    ##########################################
    ################# CRUD ###################
    ##########################################

    async def create_schedule(self, config: ScheduleConfig) -> ScheduleView:
        cron.ensure_valid(config.cron_expression)
        schedule = await self._store.create_schedule(config)
        self.logging.info("Created schedule '%s' (%s, %s).", schedule.name, schedule.type.value, schedule.cron_expression)
        return self.to_view(schedule)

    async def update_schedule(self, schedule_id: str, config: ScheduleConfig) -> ScheduleView:
        """
        Raises:
            CronValidationError: If the expression is malformed.
            NotFoundError: If the schedule does not exist.
        """
        cron.ensure_valid(config.cron_expression)
        schedule = await self._store.update_schedule(schedule_id, config)
        self.logging.info("Updated schedule '%s'.", schedule.id)
        return self.to_view(schedule)

    async def get_schedule(self, schedule_id: str) -> ScheduleView:
        schedule = await self._store.get_schedule(schedule_id)
        if schedule is None:
            raise NotFoundError("Schedule", schedule_id)
        return self.to_view(schedule)

    async def list_schedules(self) -> list[ScheduleView]:
        """All schedules, newest first, each with its derived next run."""
        return [self.to_view(schedule) for schedule in await self._store.list_schedules()]

    ##########################################
    ################ TIMING ##################
    ##########################################

    def preview(self, expression: str, n: int = 5, start: datetime | None = None) -> list[datetime]:
        """The next ``n`` fire times of an expression, without saving anything."""
        return cron.next_n_runs(expression, n, start=start)

    def due_time(self, schedule: Schedule) -> datetime:
        """First fire time strictly after the last run, or after creation if it never ran."""
        anchor = schedule.last_run or schedule.created_at
        return cron.next_run(schedule.cron_expression, ensure_utc(anchor))

    def is_due(self, schedule: Schedule, now: datetime | None = None) -> bool:
        if not schedule.enabled:
            return False
        return self.due_time(schedule) <= ensure_utc(now or utcnow())

    def to_view(self, schedule: Schedule, now: datetime | None = None) -> ScheduleView:
        """Attach the derived next run (from now) and a readable description."""
        try:
            next_run = cron.next_run(schedule.cron_expression, now or utcnow())
            description_text = cron.describe(schedule.cron_expression)
        except CronValidationError as e:
            self.logging.warning("Schedule %s has an unusable cron expression: %s", schedule.id, e)
            next_run = None
            description_text = None
        return ScheduleView.model_construct(
            **schedule.model_dump(),
            next_run=next_run,
            description_text=description_text,
        )
