from telemetry_server.app.events.models import DiscardedEvent, TelemetryEventRecord
from telemetry_server.network.database import db


def count_events(include_deleted: bool = False) -> int:
    with db():
        if include_deleted:
            return TelemetryEventRecord.including_deleted().get_query().count()
        return TelemetryEventRecord.count()


def discarded_reasons() -> list[str]:
    with db():
        return [row.reason for row in DiscardedEvent.list(ordering=['id'])]
