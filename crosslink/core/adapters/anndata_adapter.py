from __future__ import annotations

import logging
from typing import Optional

import anndata as ad
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def obs_frame(adata: ad.AnnData, *, columns: Optional[list[str]] = None) -> pd.DataFrame:
    """
    Row table for an AnnData object: one row per observation, indexed by obs_names.

    Categorical columns are converted to plain strings so snapshots compare and
    serialise the same way regardless of how the .h5ad was written.
    """
    obs = adata.obs if columns is None else adata.obs[columns]
    frame = obs.copy()

    for col in frame.columns:
        if isinstance(frame[col].dtype, pd.CategoricalDtype):
            frame[col] = frame[col].astype(str)

    frame.index = pd.Index([str(n) for n in adata.obs_names], dtype=object)

    if not frame.index.is_unique:
        logger.warning(
            "AnnData obs_names are not unique; key derivation will fail unless a key rule is given",
            extra={"n_obs": adata.n_obs},
        )

    return frame


def with_embedding(adata: ad.AnnData, key: str, *, prefix: str = "dim", n_dims: int = 2) -> pd.DataFrame:
    """
    obs table plus the first `n_dims` columns of an embedding in .obsm (e.g. "X_umap"),
    which is what a linked scatter widget needs to draw brushable points.
    """
    if key not in adata.obsm:
        raise ValueError(f"Embedding '{key}' not found in adata.obsm. Available keys: {list(adata.obsm.keys())}")

    emb = adata.obsm[key]
    arr = emb.to_numpy() if isinstance(emb, pd.DataFrame) else np.asarray(emb)
    if arr.ndim != 2 or arr.shape[1] < n_dims:
        raise ValueError(f"Embedding '{key}' must be 2D with at least {n_dims} columns, got shape {arr.shape}")

    frame = obs_frame(adata)
    for i in range(n_dims):
        frame[f"{prefix}{i + 1}"] = arr[:, i]
    return frame
