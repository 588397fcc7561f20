from .connection import create_engine_from_settings, init_db, check_database_health
from .executor import StatementExecutor, EngineExecutor, ConnectionExecutor

__all__ = [
    'create_engine_from_settings', 'init_db', 'check_database_health',
    'StatementExecutor', 'EngineExecutor', 'ConnectionExecutor',
]
