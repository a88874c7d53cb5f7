"""Configuration management with layered YAML + environment variable overrides."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, field_validator, model_validator


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base. Overlay values win."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, returning empty dict if file doesn't exist."""
    if not path.exists():
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


class DeploymentConfig(BaseModel):
    mode: str = "local"
    log_level: str = "INFO"
    log_format: str = "text"
    log_dir: Optional[str] = None

    @field_validator("log_format")
    @classmethod
    def known_format(cls, v: str) -> str:
        if v not in ("json", "text"):
            raise ValueError(f"log_format must be 'json' or 'text', got {v!r}")
        return v


class DataConfig(BaseModel):
    provider: str = "csv"
    prices_dir: str = "./data/prices"


class RiskConfig(BaseModel):
    risk_free_rate: float = 0.045
    var_confidence: float = 0.95
    rolling_window: int = 30

    @field_validator("var_confidence")
    @classmethod
    def confidence_in_range(cls, v: float) -> float:
        if not 0.5 <= v < 1.0:
            raise ValueError(f"var_confidence must be in [0.5, 1.0), got {v}")
        return v


class BacktestDefaults(BaseModel):
    initial_capital: float = 10_000.0
    rebalancing_frequency: str = "quarterly"
    benchmark_ticker: Optional[str] = "^GSPC"
    calendar_policy: str = "longest"


class MonteCarloDefaults(BaseModel):
    simulations: int = 1_000
    min_simulations: int = 100
    max_simulations: int = 50_000
    max_horizon_years: float = 30.0
    history_years: float = 2.0
    max_workers: Optional[int] = None  # None = os.cpu_count()
    batch_size: int = 250
    use_processes: bool = False
    seed: Optional[int] = None

    @field_validator("batch_size")
    @classmethod
    def positive_batch(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"batch_size must be positive, got {v}")
        return v

    @model_validator(mode="after")
    def simulation_bounds(self) -> MonteCarloDefaults:
        if self.min_simulations > self.max_simulations:
            raise ValueError(
                f"min_simulations ({self.min_simulations}) exceeds "
                f"max_simulations ({self.max_simulations})"
            )
        return self


class QuantfolioConfig(BaseModel):
    deployment: DeploymentConfig = DeploymentConfig()
    data: DataConfig = DataConfig()
    risk: RiskConfig = RiskConfig()
    backtest: BacktestDefaults = BacktestDefaults()
    monte_carlo: MonteCarloDefaults = MonteCarloDefaults()

    @classmethod
    def load(
        cls,
        deployment_mode: Optional[str] = None,
        config_dir: Optional[Path] = None,
    ) -> QuantfolioConfig:
        """Load config from default.yaml, overlaid with deployment-specific YAML.

        Priority (lowest to highest):
        1. config/default.yaml
        2. config/{mode}.yaml
        3. Environment variables (QF_DEPLOYMENT_MODE, QF_LOG_LEVEL)
        """
        if config_dir is None:
            config_dir = Path(__file__).parent.parent.parent / "config"

        base = _load_yaml(config_dir / "default.yaml")
        mode = deployment_mode or os.environ.get(
            "QF_DEPLOYMENT_MODE",
            base.get("deployment", {}).get("mode", "local"),
        )
        overlay = _load_yaml(config_dir / f"{mode}.yaml")
        merged = _deep_merge(base, overlay)
        merged = _deep_merge(merged, {"deployment": {"mode": mode}})

        log_level = os.environ.get("QF_LOG_LEVEL")
        if log_level:
            merged = _deep_merge(merged, {"deployment": {"log_level": log_level}})

        return cls(**merged)
