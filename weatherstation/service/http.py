"""
HTTP API.

Reads the shared sensor map under its read lock and the registry/logs through
read transactions. Label edits and forgets open short write transactions
without awaiting inside them.
"""

import logging
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from pydantic import BaseModel, Field

from .. import __version__
from ..ble.address import AddressParseError, BluetoothAddress
from ..storage.schema import AddrDbEntry
from ..storage.store import StorageError
from ..utils import timestamp
from .context import GatewayContext
from .dashboard import SCRIPT, SensorRow, render_home


log = logging.getLogger(__name__)

CORS_METHODS = ["GET", "PUT", "DELETE", "HEAD"]


class ChangeLabel(BaseModel):
    addr: str
    new_label: Optional[str] = Field(None, max_length=100)


class Forget(BaseModel):
    addr: str


def parse_address(text: str) -> BluetoothAddress:
    try:
        return BluetoothAddress.parse(text)
    except AddressParseError as e:
        raise HTTPException(status_code=422, detail=str(e))


async def labelled_sensors(ctx: GatewayContext) -> List[SensorRow]:
    """(address, label, state) for every tracked sensor, ordered by address."""
    async with ctx.lock.read():
        sensors = ctx.sorted_sensors()
    with ctx.store.read_txn() as txn:
        rows = []
        for addr, state in sensors:
            entry = txn.get_addr(addr)
            rows.append((addr, entry.label if entry else None, state))
    return rows


def create_app(ctx: GatewayContext) -> FastAPI:
    """Build the API application around a gateway context."""
    app = FastAPI(title="BLE Weatherstation Gateway", version=__version__)
    app.state.ctx = ctx
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=CORS_METHODS,
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        log.error(f"Storage error while handling {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.get("/", response_class=HTMLResponse)
    async def home():
        return render_home(await labelled_sensors(ctx))

    @app.get("/static/script.js")
    async def script():
        return Response(content=SCRIPT, media_type="application/javascript")

    @app.get("/api/state")
    async def get_state():
        """Every tracked sensor with its label and current state."""
        return [
            {"addr": str(addr), "label": label, "state": state.to_dict()}
            for addr, label, state in await labelled_sensors(ctx)
        ]

    @app.put("/api/change_label")
    async def change_label(req: ChangeLabel):
        addr = parse_address(req.addr)
        with ctx.store.write_txn() as txn:
            txn.put_addr(addr, AddrDbEntry(label=req.new_label))
            txn.commit()
        log.info(f"Changed label of {addr} to {req.new_label!r}")
        return {}

    @app.delete("/api/forget")
    async def forget(req: Forget):
        addr = parse_address(req.addr)
        async with ctx.lock.write():
            ctx.sensors.pop(addr, None)
        with ctx.store.write_txn() as txn:
            txn.delete_addr(addr)
            txn.commit()
        log.info(f"Forgot sensor {addr}")
        return {}

    @app.get("/api/log")
    async def get_log(addr: str,
                      start: Optional[int] = Query(None, ge=0, le=timestamp.MAX_TIMESTAMP),
                      end: Optional[int] = Query(None, ge=0, le=timestamp.MAX_TIMESTAMP)):
        """Samples of one sensor in [start, end), the last day by default."""
        address = parse_address(addr)
        if end is None:
            end = timestamp.now()
        if start is None:
            start = timestamp.bottoming_sub(end, timestamp.ONE_DAY)

        with ctx.store.read_txn() as txn:
            entries = txn.get_log(address, start, end)
        if entries is None:
            raise HTTPException(status_code=404, detail=f"No log for {address}")
        return [[ts, values.to_dict()] for ts, values in entries]

    @app.get("/api/health")
    async def health():
        async with ctx.lock.read():
            count = len(ctx.sensors)
        return {"status": "ok", "sensors": count}

    return app
