# ELI IREX ingestion — Database Models
# Import all models here for SQLAlchemy discovery

from app.models.channel import Channel                 # noqa
from app.models.event import Event                     # noqa
from app.models.snapshot import Snapshot               # noqa
from app.models.webhook_request import WebhookRequest  # noqa
