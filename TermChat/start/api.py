from typing import Optional

from TermChat import api as _api
from TermChat.config import config
from TermChat.core.server.chat import ChatCore
from TermChat.core.server.storage_sqlite import SQLiteDirectory, SQLiteMessageLog, SQLiteStore


def api(host: Optional[str] = None, port: Optional[int] = None, db_path: Optional[str] = None) -> None:
    """
    Start the HTTP API on its own.

    Args:
        host: Address to listen on
        port: Port number for the api (default: config.DEFAULT_API_PORT)
        db_path: SQLite database file
    """
    store = SQLiteStore(db_path or config.SQLITE_DB_FILE)
    core = ChatCore(SQLiteDirectory(store), SQLiteMessageLog(store))
    _api.run(core, host=host, api_port=port)
