import os
from dataclasses import dataclass

from pyaml_env import parse_config


class ClusteringConfig:
    @dataclass
    class App:
        log_level: str = "INFO"

        def __post_init__(self):
            self.log_level = str(self.log_level).upper()

    @dataclass
    class Temporal:
        tau: float = 1.0
        lam: float = 1.0
        q: float = 1.0

        def __post_init__(self):
            self.tau = float(self.tau)
            self.lam = float(self.lam)
            self.q = float(self.q)

    @dataclass
    class Statistics:
        max_workers: int = 4
        fallback: str = "column"
        seed: int | None = None

        def __post_init__(self):
            self.max_workers = int(self.max_workers)
            self.fallback = str(self.fallback).lower()
            if self.seed is not None and self.seed != "":
                self.seed = int(self.seed)
            else:
                self.seed = None
            if self.max_workers <= 0:
                msg = f"max_workers must be greater than 0, got {self.max_workers}"
                raise ValueError(msg)
            if self.fallback not in {"column", "random"}:
                msg = f"Invalid fallback: {self.fallback}, must be 'column' or 'random'"
                raise ValueError(msg)

    def __init__(self, version, app=None, temporal=None, statistics=None):
        self.version = version
        self.app = ClusteringConfig.App(**(app or {}))
        temporal = dict(temporal or {})
        if "lambda" in temporal:
            temporal["lam"] = temporal.pop("lambda")
        self.temporal = ClusteringConfig.Temporal(**temporal)
        self.statistics = ClusteringConfig.Statistics(**(statistics or {}))


def load_config(path: str) -> ClusteringConfig:
    return ClusteringConfig(**parse_config(path=path))


current_dir = os.path.dirname(os.path.abspath(__file__))
config_path = os.path.join(current_dir, '..', 'config.yaml')
config = load_config(config_path)
