from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Any, Dict, Optional
from pydantic import BaseModel

from ..core.engine import SnipeEngine
from ..exceptions import ConfigNotFoundError, ConfigValidationError


class EnableRequest(BaseModel):
    acknowledged: bool = False


def create_app(engine: Optional[SnipeEngine] = None, run_engine: bool = True) -> FastAPI:
    """Build the API around ``engine``.

    With ``run_engine`` the engine's background tasks follow the app's
    startup and shutdown.
    """
    engine = engine or SnipeEngine()
    app = FastAPI(title="Snipe Engine API")
    app.state.engine = engine

    # Enable CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if run_engine:
        @app.on_event("startup")
        async def startup_event():
            """Start engine services on startup."""
            await engine.start()

        @app.on_event("shutdown")
        async def shutdown_event():
            await engine.shutdown()

    @app.exception_handler(ConfigValidationError)
    async def validation_error_handler(request: Request, exc: ConfigValidationError):
        return JSONResponse(
            status_code=422,
            content={"detail": exc.message, "rule": exc.rule}
        )

    @app.exception_handler(ConfigNotFoundError)
    async def not_found_handler(request: Request, exc: ConfigNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    # Bot

    @app.get("/status")
    async def get_status():
        """Bot, gas estimator and queue summary."""
        return engine.status()

    @app.post("/bot/start")
    async def start_bot():
        engine.start_bot()
        return engine.status()

    @app.post("/bot/stop")
    async def stop_bot():
        engine.stop_bot()
        return engine.status()

    # Snipe configs

    @app.get("/configs")
    async def list_configs():
        return engine.configs.list_configs()

    @app.get("/configs/{config_id}")
    async def get_config(config_id: str):
        return engine.configs.get(config_id)

    @app.post("/configs", status_code=201)
    async def add_config(payload: Dict[str, Any] = Body(...)):
        """Add a config; it starts disabled."""
        config_id = engine.configs.add(payload)
        return engine.configs.get(config_id)

    @app.patch("/configs/{config_id}")
    async def update_config(config_id: str, payload: Dict[str, Any] = Body(...)):
        updated = engine.configs.update(config_id, payload)
        if updated is None:
            raise HTTPException(status_code=404, detail="Snipe config not found")
        return updated

    @app.delete("/configs/{config_id}")
    async def remove_config(config_id: str):
        if not engine.configs.remove(config_id):
            raise HTTPException(status_code=404, detail="Snipe config not found")
        return {"status": "success"}

    @app.post("/configs/{config_id}/enable")
    async def enable_config(config_id: str, request: EnableRequest):
        return engine.configs.enable(config_id, request.acknowledged)

    @app.post("/configs/{config_id}/disable")
    async def disable_config(config_id: str):
        return engine.configs.disable(config_id)

    # Read-only snapshots

    @app.get("/queue")
    async def get_queue():
        return engine.queue.items()

    @app.delete("/queue/{item_id}")
    async def cancel_queue_item(item_id: str):
        """Cancel an item that has not started executing."""
        if not engine.queue.cancel(item_id):
            raise HTTPException(status_code=409, detail="Item is not queued")
        return {"status": "success"}

    @app.get("/gas")
    async def get_gas_estimations():
        return engine.gas.snapshot()

    @app.get("/slippage")
    async def get_slippage_calculations():
        return engine.slippage.snapshot()

    @app.get("/network")
    async def get_network_stats():
        return engine.network.stats

    @app.get("/market")
    async def get_market_data():
        return engine.market.snapshot()

    @app.get("/positions")
    async def get_positions():
        return engine.open_positions()

    @app.get("/transactions")
    async def get_transactions():
        return engine.ledger.transactions()

    return app
