from telemetry_server.network.database.session import IsolatedSession, db, engine, on_commit

__all__ = ['IsolatedSession', 'db', 'engine', 'on_commit']
