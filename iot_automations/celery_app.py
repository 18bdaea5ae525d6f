from celery import Celery
from celery.signals import worker_process_init

from iot_automations.logging import configure_logging
from iot_automations.services.scheduler_config import build_beat_schedule, get_celery_config
from iot_automations.telemetry import setup_otel

celery_app = Celery("iot_automations", include=["iot_automations.tasks.automations"])
celery_app.conf.update(get_celery_config())
celery_app.conf.beat_schedule = build_beat_schedule()


@worker_process_init.connect
def _init_worker_process(**_kwargs) -> None:
    configure_logging()
    setup_otel()
