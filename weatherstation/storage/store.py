"""
Embedded transactional storage engine.

One SQLite database inside the storage directory holds the address registry
(table ``addr``) and one append-only log table per known address, named by
the address' canonical string. Readers run inside snapshot transactions
(write-ahead logging), and at most one write transaction may be open at a
time: a second attempt fails instead of queuing.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple, Union

from pydantic import ValidationError
from sqlalchemy import (
    Column,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    create_engine,
    delete,
    event,
    func,
    select,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from ..ble.address import BluetoothAddress
from ..sensor import RawSensorValues, SensorValueError, SensorValues
from .schema import AddrDbEntry


DB_FILENAME = "weatherstation.sqlite3"
REGISTRY_TABLE = "addr"

LogEntries = List[Tuple[int, SensorValues]]


class StorageError(Exception):
    """Base exception for storage failures."""
    pass


class DirectoryCreateError(StorageError):
    """Storage directory could not be created."""
    pass


class BackendOpenError(StorageError):
    """Backing database could not be opened or initialized."""
    pass


class BackendError(StorageError):
    """A read or write against the backing database failed."""
    pass


class LogOrderError(BackendError):
    """Append key is not strictly greater than the log's current maximum."""
    pass


class MultipleWriteTransactions(StorageError):
    """A write transaction is already open."""

    def __init__(self):
        super().__init__("Another write transaction is already open")


def _enable_wal(engine: Engine):
    """Let SQLAlchemy drive BEGIN itself and switch the database to WAL."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


@contextmanager
def _backend_errors(action: str):
    try:
        yield
    except StorageError:
        raise
    except SQLAlchemyError as e:
        raise BackendError(f"Failed to {action}: {e}") from e


class ReadTxn:
    """
    Snapshot view of the registry and the logs.

    Use as a context manager; the transaction is released on exit.
    """

    def __init__(self, store: 'Store', connection: Connection):
        self._store = store
        self._conn = connection
        self._trans = connection.begin()
        self._finished = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self):
        if not self._finished:
            self._finished = True
            try:
                self._trans.rollback()
            finally:
                self._conn.close()

    def get_addr(self, address: BluetoothAddress) -> Optional[AddrDbEntry]:
        """Get the registry entry for an address, None when not registered."""
        registry = self._store.registry
        with _backend_errors(f"read registry entry {address}"):
            row = self._conn.execute(
                select(registry.c.entry).where(registry.c.addr == address.value)
            ).first()
        if row is None:
            return None
        try:
            return AddrDbEntry.model_validate_json(row.entry)
        except ValidationError as e:
            raise BackendError(f"Corrupt registry entry for {address}: {e}") from e

    def known_addrs(self) -> List[BluetoothAddress]:
        """All registered addresses in ascending order."""
        return self._store._known_addrs(self._conn)

    def get_log(self, address: BluetoothAddress, start: int, end: int) -> Optional[LogEntries]:
        """
        Get the samples of one address with ``start <= timestamp < end``.

        Samples that no longer decode into valid values are skipped.

        Returns:
            Ascending (timestamp, values) pairs, or None when the address has no log
        """
        table = self._store._logs.get(address)
        if table is None:
            return None

        with _backend_errors(f"read log of {address}"):
            rows = self._conn.execute(
                select(table.c.timestamp, table.c.sample)
                .where(table.c.timestamp >= start, table.c.timestamp < end)
                .order_by(table.c.timestamp)
            ).all()

        entries = []
        for timestamp, sample in rows:
            try:
                values = RawSensorValues.from_bytes(sample).to_values()
            except SensorValueError as e:
                self._store.logger.debug(f"Skipping undecodable sample {address}@{timestamp}: {e}")
                continue
            entries.append((timestamp, values))
        return entries


class WriteTxn(ReadTxn):
    """
    The single read-write transaction.

    Changes become durable on :meth:`commit`. Leaving the ``with`` block
    without committing rolls everything back. Either way the single-writer
    flag is released.
    """

    def __init__(self, store: 'Store', connection: Connection, release):
        super().__init__(store, connection)
        self._release = release
        self._pending_logs: Dict[BluetoothAddress, Table] = {}

    def close(self):
        if self._finished:
            return
        try:
            super().close()
        finally:
            self._pending_logs.clear()
            self._release()

    def commit(self):
        """Make the changes durable and publish logs created in this transaction."""
        if self._finished:
            raise BackendError("Transaction already finished")
        self._finished = True
        try:
            with _backend_errors("commit write transaction"):
                self._trans.commit()
            self._store._logs.update(self._pending_logs)
        finally:
            self._pending_logs.clear()
            self._conn.close()
            self._release()

    def _open_log(self, address: BluetoothAddress) -> Optional[Table]:
        table = self._store._logs.get(address)
        if table is None:
            table = self._pending_logs.get(address)
        return table

    def put_addr(self, address: BluetoothAddress, entry: AddrDbEntry):
        """Insert or replace a registry entry, creating the address' log if needed."""
        registry = self._store.registry
        stmt = sqlite_insert(registry).values(addr=address.value, entry=entry.model_dump_json())
        stmt = stmt.on_conflict_do_update(
            index_elements=[registry.c.addr],
            set_={"entry": stmt.excluded.entry},
        )
        with _backend_errors(f"write registry entry {address}"):
            self._conn.execute(stmt)
            if self._open_log(address) is None:
                table = self._store._log_table(address)
                table.create(self._conn, checkfirst=True)
                self._pending_logs[address] = table

    def delete_addr(self, address: BluetoothAddress) -> bool:
        """
        Remove a registry entry. The address' log is kept.

        Returns:
            bool: True if an entry was removed
        """
        registry = self._store.registry
        with _backend_errors(f"delete registry entry {address}"):
            result = self._conn.execute(delete(registry).where(registry.c.addr == address.value))
        return result.rowcount > 0

    def log(self, address: BluetoothAddress, timestamp: int, values: SensorValues) -> bool:
        """
        Append one sample to the address' log.

        Returns:
            bool: False when the address has no open log

        Raises:
            LogOrderError: If timestamp is not after the newest stored sample
        """
        table = self._open_log(address)
        if table is None:
            return False

        with _backend_errors(f"append to log of {address}"):
            newest = self._conn.execute(select(func.max(table.c.timestamp))).scalar()
            if newest is not None and timestamp <= newest:
                raise LogOrderError(
                    f"Log of {address} already holds timestamp {newest}, cannot append {timestamp}"
                )
            self._conn.execute(
                table.insert().values(
                    timestamp=timestamp,
                    sample=RawSensorValues.from_values(values).to_bytes(),
                )
            )
        return True


class Store:
    """Handle on an opened storage directory."""

    def __init__(self, engine: Engine, path: Path, logger: Optional[logging.Logger] = None):
        self.engine = engine
        self.path = path
        self.logger = logger or logging.getLogger('weatherstation.storage')
        self.metadata = MetaData()
        self.registry = Table(
            REGISTRY_TABLE,
            self.metadata,
            Column("addr", Integer, primary_key=True, autoincrement=False),
            Column("entry", String, nullable=False),
        )
        self._logs: Dict[BluetoothAddress, Table] = {}
        self._writer = threading.Lock()

    @classmethod
    def open(cls, path: Union[str, Path], logger: Optional[logging.Logger] = None) -> 'Store':
        """
        Open the store in ``path``, creating the directory and database if absent.

        Every registered address gets its log opened (or created).

        Raises:
            DirectoryCreateError: If the directory cannot be created
            BackendOpenError: If the database cannot be opened or initialized
        """
        path = Path(path)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DirectoryCreateError(f"Failed to create storage directory {path}: {e}") from e

        engine = create_engine(f"sqlite:///{path / DB_FILENAME}")
        _enable_wal(engine)
        store = cls(engine, path, logger)

        try:
            with engine.begin() as conn:
                store.registry.create(conn, checkfirst=True)
                for address in store._known_addrs(conn):
                    table = store._log_table(address)
                    table.create(conn, checkfirst=True)
                    store._logs[address] = table
        except (SQLAlchemyError, sqlite3.Error, StorageError) as e:
            engine.dispose()
            raise BackendOpenError(f"Failed to open storage at {path}: {e}") from e

        store.logger.info(f"Opened storage at {path} with {len(store._logs)} sensor logs")
        return store

    def _log_table(self, address: BluetoothAddress) -> Table:
        name = str(address)
        table = self.metadata.tables.get(name)
        if table is None:
            table = Table(
                name,
                self.metadata,
                Column("timestamp", Integer, primary_key=True, autoincrement=False),
                Column("sample", LargeBinary(RawSensorValues.SIZE), nullable=False),
            )
        return table

    def _known_addrs(self, conn: Connection) -> List[BluetoothAddress]:
        with _backend_errors("list registered addresses"):
            rows = conn.execute(select(self.registry.c.addr).order_by(self.registry.c.addr)).all()
        return [BluetoothAddress(row.addr) for row in rows]

    def _connect(self) -> Connection:
        with _backend_errors("open transaction"):
            return self.engine.connect()

    @property
    def open_logs(self) -> Set[BluetoothAddress]:
        return set(self._logs)

    def read_txn(self) -> ReadTxn:
        """Begin a read transaction. Any number may be open at once."""
        conn = self._connect()
        try:
            with _backend_errors("begin read transaction"):
                return ReadTxn(self, conn)
        except BackendError:
            conn.close()
            raise

    def write_txn(self) -> WriteTxn:
        """
        Begin the write transaction.

        Raises:
            MultipleWriteTransactions: If another write transaction is open
        """
        if not self._writer.acquire(blocking=False):
            raise MultipleWriteTransactions()
        try:
            conn = self._connect()
            try:
                with _backend_errors("begin write transaction"):
                    return WriteTxn(self, conn, self._writer.release)
            except BackendError:
                conn.close()
                raise
        except BaseException:
            self._writer.release()
            raise

    def close(self):
        self.engine.dispose()
        self.logger.debug(f"Closed storage at {self.path}")
