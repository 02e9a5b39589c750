import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import iotfleet.constants as C
from iotfleet.errors import ConfigError
from iotfleet.models import ContractAction, Credential

pkg_root = Path(__file__).parent
config_file = pkg_root / "config.toml"


@dataclass(frozen=True, slots=True)
class NetworkConfig:
    name: str
    chain_id: str | None
    seeds: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class EndpointConfig:
    mode: C.EndpointMode = C.EndpointMode.DIRECT
    pool_max: int = C.DEFAULT_POOL_MAX
    trust_seeds: bool = True
    producer_limit: int = C.DEFAULT_PRODUCER_LIMIT
    active_only: bool = False


@dataclass(frozen=True, slots=True)
class SubmitterConfig:
    workers: int = C.SUBMIT_WORKERS
    queue_size: int = C.SUBMIT_QUEUE_SIZE
    timeout: float = C.SUBMIT_TIMEOUT


@dataclass(frozen=True, slots=True)
class ControlConfig:
    endpoint: str | None = None
    credential: str | None = None
    reset_action: str = "reset"
    results_table: str = "nodes"
    api_host: str = "0.0.0.0"
    api_port: int = 8000


@dataclass(frozen=True, slots=True)
class FleetConfig:
    network: NetworkConfig
    credentials: tuple[Credential, ...]
    nodes: int = C.DEFAULT_NUM_NODES
    period_sec: float = C.DEFAULT_PERIOD_SEC
    seed: int | None = None
    endpoints: EndpointConfig = field(default_factory=EndpointConfig)
    tapos_expiry_sec: int = C.DEFAULT_TAPOS_EXPIRY_S
    rolling_expiration: bool = False
    contract: ContractAction = field(default_factory=ContractAction)
    submitter: SubmitterConfig = field(default_factory=SubmitterConfig)
    control: ControlConfig = field(default_factory=ControlConfig)

    @classmethod
    def from_dict(cls, cfg: dict[str, Any], *, network: str | None = None) -> "FleetConfig":
        sim = cfg.get("simulation", {})
        ep = cfg.get("endpoints", {})
        tp = cfg.get("tapos", {})
        ct = cfg.get("contract", {})
        sub = cfg.get("submitter", {})
        ctl = cfg.get("control", {})

        net_name = network or sim.get("network")
        networks = cfg.get("networks", {})
        if not net_name or net_name not in networks:
            raise ConfigError(f"unknown network {net_name!r}; configured: {sorted(networks)}")
        net = networks[net_name]
        seeds = tuple(net.get("seeds", ()))
        if not seeds:
            raise ConfigError(f"network {net_name!r} has no seeds")

        try:
            credentials = tuple(Credential.from_dict(c) for c in cfg.get("credentials", []))
            mode = C.EndpointMode(ep.get("mode", C.EndpointMode.DIRECT))
            conf = cls(
                network=NetworkConfig(name=net_name, chain_id=net.get("chain_id"), seeds=seeds),
                credentials=credentials,
                nodes=int(sim.get("nodes", C.DEFAULT_NUM_NODES)),
                period_sec=float(sim.get("period_sec", C.DEFAULT_PERIOD_SEC)),
                seed=sim.get("seed"),
                endpoints=EndpointConfig(
                    mode=mode,
                    pool_max=int(ep.get("pool_max", C.DEFAULT_POOL_MAX)),
                    trust_seeds=bool(ep.get("trust_seeds", True)),
                    producer_limit=int(ep.get("producer_limit", C.DEFAULT_PRODUCER_LIMIT)),
                    active_only=bool(ep.get("active_only", False)),
                ),
                tapos_expiry_sec=int(tp.get("expiry_sec", C.DEFAULT_TAPOS_EXPIRY_S)),
                rolling_expiration=bool(tp.get("rolling_expiration", False)),
                contract=ContractAction(
                    account=ct.get("account", C.DEFAULT_CONTRACT),
                    name=ct.get("action", C.DEFAULT_ACTION),
                    memo=ct.get("memo", C.DEFAULT_MEMO),
                ),
                submitter=SubmitterConfig(
                    workers=int(sub.get("workers", C.SUBMIT_WORKERS)),
                    queue_size=int(sub.get("queue_size", C.SUBMIT_QUEUE_SIZE)),
                    timeout=float(sub.get("timeout", C.SUBMIT_TIMEOUT)),
                ),
                control=ControlConfig(**ctl),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"invalid config: {e}") from e
        conf.validate()
        return conf

    def validate(self) -> None:
        if self.nodes < 0:
            raise ConfigError("simulation.nodes must be >= 0")
        if self.period_sec <= 0:
            raise ConfigError("simulation.period_sec must be > 0")
        if self.endpoints.pool_max < 1:
            raise ConfigError("endpoints.pool_max must be >= 1")
        if self.submitter.workers < 1:
            raise ConfigError("submitter.workers must be >= 1")
        if self.endpoints.mode is C.EndpointMode.DISCOVERY and not self.network.chain_id:
            raise ConfigError(f"discovery mode needs networks.{self.network.name}.chain_id to validate endpoints")

    def with_overrides(self, **overrides: Any) -> "FleetConfig":
        """Copy with top-level or ``endpoints.<field>`` overrides; None values are ignored."""
        top = {k: v for k, v in overrides.items() if v is not None and "." not in k}
        ep = {k.split(".", 1)[1]: v for k, v in overrides.items() if v is not None and k.startswith("endpoints.")}
        conf = replace(self, **top)
        if ep:
            if "mode" in ep:
                ep["mode"] = C.EndpointMode(ep["mode"])
            conf = replace(conf, endpoints=replace(conf.endpoints, **ep))
        conf.validate()
        return conf

    def credential(self, name: str) -> Credential | None:
        return next((c for c in self.credentials if c.name == name), None)


def read_config_file(path: str | Path | None = None) -> dict:
    path = Path(path or os.getenv("IOTFLEET_CONFIG") or config_file)
    try:
        return tomllib.loads(path.read_text())
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path}: {e}") from e


def load_config(path: str | Path | None = None, *, network: str | None = None) -> FleetConfig:
    """Load config.toml, then apply IOTFLEET_* environment overrides."""
    cfg = read_config_file(path)
    conf = FleetConfig.from_dict(cfg, network=network or os.getenv("IOTFLEET_NETWORK"))
    try:
        env = {
            "nodes": int(os.environ["IOTFLEET_NODES"]) if "IOTFLEET_NODES" in os.environ else None,
            "period_sec": float(os.environ["IOTFLEET_PERIOD"]) if "IOTFLEET_PERIOD" in os.environ else None,
        }
    except ValueError as e:
        raise ConfigError(f"bad environment override: {e}") from e
    return conf.with_overrides(**env)
