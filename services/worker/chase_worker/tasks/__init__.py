"""Chase Worker Tasks."""

# Import all tasks to register them with Celery
from chase_worker.tasks import chase  # noqa: F401
from chase_worker.tasks import maintenance  # noqa: F401
from chase_worker.tasks import message  # noqa: F401
