from celery import Celery

from finsight.core.config import settings

app = Celery("finsight")
app.conf.broker_url = settings.CELERY_BROKER_URL
app.conf.result_backend = settings.CELERY_RESULT_BACKEND
app.conf.timezone = settings.CELERY_TIMEZONE
app.conf.enable_utc = False

app.autodiscover_tasks(["finsight"])
app.conf.imports = ("finsight.tasks.prices",)

app.conf.beat_schedule = {
    "refresh-all-prices": {
        "task": "finsight.tasks.prices.refresh_all_prices",
        "schedule": float(settings.PRICE_REFRESH_INTERVAL_SECONDS),
    },
}
