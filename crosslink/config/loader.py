from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

import anndata as ad
import pandas as pd

from crosslink.config.model import DatasetConfig, GlobalConfig, LinkConfig
from crosslink.core.adapters.anndata_adapter import obs_frame, with_embedding
from crosslink.core.exceptions import ConfigError
from crosslink.core.keys import KeyRule, index_rule

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".csv", ".h5ad")


def _apply_env_overrides(link: LinkConfig) -> LinkConfig:
    raw = os.getenv("CROSSLINK_DEBOUNCE_MS")
    if raw is None:
        return link
    try:
        link.debounce_ms = int(raw)
    except ValueError:
        raise ConfigError(f"CROSSLINK_DEBOUNCE_MS must be an integer, got {raw!r}") from None
    return link


def load_global_config(root: Path) -> GlobalConfig:
    """
    Load configuration from a directory using the multi-file layout.

        root/
            global.json
            datasets/
                cells.json
                ...

    global.json keys: ui_title, data_root, debounce_ms, selection_column,
    server_source_id, groups, max_sessions, session_idle_seconds. CROSSLINK_DEBOUNCE_MS overrides debounce_ms.

    :raises FileNotFoundError: if global.json does not exist.
    :raises ConfigError: if a file is not valid JSON.
    """
    logger.info("Loading global config", extra={"config_root": str(root)})

    global_path = root / "global.json"
    if not global_path.is_file():
        raise FileNotFoundError(f"File not found at {global_path}")

    try:
        with global_path.open() as f:
            raw_global = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {global_path}: {e}") from e

    datasets_dir = root / "datasets"
    datasets: List[DatasetConfig] = []

    if datasets_dir.is_dir():
        files = sorted(datasets_dir.glob("*.json"))
        if not files:
            logger.warning("No dataset configs found", extra={"datasets_dir": str(datasets_dir)})

        for idx, config_file in enumerate(files):
            try:
                with config_file.open() as f:
                    raw = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigError(f"Invalid JSON in {config_file}: {e}") from e
            if "file" not in raw:
                raise ConfigError(f"Dataset config {config_file.name} has no 'file' entry")
            datasets.append(DatasetConfig.from_raw(raw, source_path=config_file, index=idx))

    data_root_raw = raw_global.get("data_root")
    if data_root_raw is None:
        data_root = None
    else:
        data_root_path = Path(data_root_raw)
        data_root = data_root_path if data_root_path.is_absolute() else (root / data_root_path).resolve()

    link = _apply_env_overrides(LinkConfig.from_dict(raw_global))

    return GlobalConfig(
        ui_title=raw_global.get("ui_title", "Linked Views"),
        link=link,
        datasets=datasets,
        data_root=data_root,
    )


def load_dataset_registry(root: Path) -> tuple[GlobalConfig, Dict[str, DatasetConfig]]:
    """
    Load global config + dataset config objects only (no data is read).
    Returns mapping of dataset name -> DatasetConfig.
    """
    global_config = load_global_config(root)

    cfg_by_name: Dict[str, DatasetConfig] = {}
    duplicates: List[str] = []
    for ds_cfg in global_config.datasets:
        if ds_cfg.name in cfg_by_name:
            duplicates.append(ds_cfg.name)
            continue
        cfg_by_name[ds_cfg.name] = ds_cfg

    if duplicates:
        raise ConfigError(f"Duplicate dataset names in config: {sorted(set(duplicates))}")

    logger.info(
        "Dataset registry loaded",
        extra={"config_root": str(root), "dataset_names": sorted(cfg_by_name)},
    )
    return global_config, cfg_by_name


def resolve_data_path(cfg: DatasetConfig, data_root: Optional[Path] = None) -> Path:
    """
    Resolve a dataset file: absolute paths as-is, relative ones against
    CROSSLINK_DATA_ROOT, then the configured data_root, then the config file's folder.
    """
    path = cfg.path
    if path.is_absolute():
        return path

    candidates: List[Path] = []
    env_root = os.environ.get("CROSSLINK_DATA_ROOT")
    if env_root:
        candidates.append(Path(env_root) / path)
    if data_root is not None:
        candidates.append(data_root / path)
    candidates.append(cfg.source_path.parent / path)

    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return candidates[0]


def read_dataset_frame(cfg: DatasetConfig, data_root: Optional[Path] = None) -> pd.DataFrame:
    """Read the rows of a configured dataset file into a DataFrame."""
    path = resolve_data_path(cfg, data_root)
    if not path.is_file():
        raise ConfigError(f"Data file for dataset '{cfg.name}' not found at {path}")

    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ConfigError(f"Unsupported data file type '{suffix}' for dataset '{cfg.name}'")

    logger.info("Reading dataset file", extra={"dataset": cfg.name, "path": str(path)})

    if suffix == ".csv":
        return pd.read_csv(path)
    adata = ad.read_h5ad(path)
    if cfg.embedding_key:
        return with_embedding(adata, cfg.embedding_key)
    return obs_frame(adata)


def key_rule_for(cfg: DatasetConfig) -> Optional[KeyRule]:
    """Configured key column; h5ad files fall back to obs_names, csv files to row position."""
    if cfg.key:
        return cfg.key
    if cfg.path.suffix.lower() == ".h5ad":
        return index_rule
    return None
