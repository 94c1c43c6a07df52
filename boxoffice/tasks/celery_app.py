from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from celery.signals import worker_ready
from boxoffice.core.config import settings


def _redis_url_for_celery(url: str) -> str:
    """Celery requires ssl_cert_reqs for rediss:// (e.g. Upstash TLS)."""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" not in qs:
        qs["ssl_cert_reqs"] = ["CERT_NONE"]
        new_query = urlencode(qs, doseq=True)
        return urlunparse(parsed._replace(query=new_query))
    return url


_redis_url = _redis_url_for_celery(settings.REDIS_URL)

celery = Celery(
    "boxoffice",
    broker=_redis_url,
    backend=_redis_url,
    include=["boxoffice.tasks.jobs"],
)

celery.conf.timezone = "UTC"

# Sweep once on worker start so holds that lapsed while no worker ran are released immediately
@worker_ready.connect
def on_worker_ready(sender, **kwargs):
    from boxoffice.tasks.jobs import expire_holds
    expire_holds.delay()

# Used when SWEEPER_IN_PROCESS=false: the beat process owns the sweep instead of the API.
celery.conf.beat_schedule = {
    "expire-holds": {
        "task": "boxoffice.tasks.jobs.expire_holds",
        "schedule": float(settings.SWEEPER_INTERVAL_SECONDS),
    },
}
