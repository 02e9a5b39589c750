import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, HTTPException, Request
from pydantic import BaseModel

from iotfleet.config import FleetConfig, load_config
from iotfleet.control import ControlClient
from iotfleet.errors import ChainError, ConfigError, CredentialError
from iotfleet.fleet import Fleet, periodic_report

log = logging.getLogger("iotfleet.app")


class TaposResp(BaseModel):
    chain_id: str
    expiration: str
    expiration_epoch: int
    ref_block_num: int
    ref_block_prefix: int


class NodeResp(BaseModel):
    id: int
    unique_id: str
    endpoint: str
    credential: str
    start_delay: float
    tx_count: int
    state: str


class NodesResp(BaseModel):
    count: int
    nodes: list[NodeResp]


class ResultsResp(BaseModel):
    rows: int
    unique_nodes: int
    total: int
    by_user: dict[str, int]


def create_app(config: FleetConfig | None = None, **fleet_kwargs) -> FastAPI:
    """Control API whose lifespan runs the fleet. ``fleet_kwargs`` go to Fleet()."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        conf = config or load_config()
        stop = asyncio.Event()
        fleet = Fleet(conf, **fleet_kwargs)
        app.state.fleet = fleet
        app.state.stop = stop
        app.state.control = None

        try:
            log.info("Starting fleet on %s...", conf.network.name)
            count = await fleet.start()
            log.info("Fleet running: %s nodes. Ready to accept requests!", count)

            async with asyncio.TaskGroup() as tg:
                tg.create_task(periodic_report(fleet, stop), name="fleet_report")
                try:
                    yield
                finally:
                    log.info("Shutting down...")
                    stop.set()
        finally:
            await fleet.stop()
        log.info("Shutdown complete")

    app = FastAPI(
        title="IoT Fleet Simulator",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "State", "description": "Fleet, node and submission state"},
            {"name": "Control", "description": "Administrative actions on the target contract"},
        ],
    )
    r_state = APIRouter(prefix="/state", tags=["State"])
    r_control = APIRouter(prefix="/control", tags=["Control"])

    def _fleet(request: Request) -> Fleet:
        return request.app.state.fleet

    def _control(request: Request) -> ControlClient:
        ctl = request.app.state.control
        if ctl is None:
            fleet = _fleet(request)
            pool = fleet.pool
            try:
                ctl = ControlClient.from_config(
                    fleet.config.control,
                    fleet.config.contract,
                    fleet.config.credentials,
                    fleet.signer,
                    fleet.clients,
                    default_endpoint=pool.endpoints[0] if pool else None,
                )
            except (ConfigError, CredentialError) as e:
                raise HTTPException(status_code=503, detail=str(e))
            request.app.state.control = ctl
        return ctl

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @r_state.get("/summary")
    async def state_summary(request: Request):
        return _fleet(request).snapshot_stats()

    @r_state.get("/tapos", response_model=TaposResp)
    async def state_tapos(request: Request):
        tapos = _fleet(request).tapos
        if tapos is None:
            raise HTTPException(status_code=404, detail="No TAPoS snapshot")
        return tapos.to_dict()

    @r_state.get("/nodes", response_model=NodesResp)
    async def state_nodes(request: Request, limit: int = 100, offset: int = 0):
        nodes = _fleet(request).scheduler.nodes
        return {
            "count": len(nodes),
            "nodes": [n.summary() for n in nodes[offset:offset + limit]],
        }

    @r_state.get("/nodes/{node_id}", response_model=NodeResp)
    async def state_node(request: Request, node_id: int):
        for n in _fleet(request).scheduler.nodes:
            if n.id == node_id:
                return n.summary()
        raise HTTPException(status_code=404, detail=f"Node {node_id} not found")

    @r_control.post("/reset")
    async def control_reset(request: Request):
        """Reset the contract's remote simulation state."""
        try:
            return await _control(request).reset()
        except ChainError as e:
            raise HTTPException(status_code=502, detail=f"reset failed: {e}")

    @r_control.get("/results", response_model=ResultsResp)
    async def control_results(request: Request, limit: int = 1000):
        """Aggregated results from the contract's table."""
        try:
            return await _control(request).results(limit=limit)
        except ChainError as e:
            raise HTTPException(status_code=502, detail=f"results failed: {e}")

    app.include_router(r_state)
    app.include_router(r_control)
    return app


app = create_app()
