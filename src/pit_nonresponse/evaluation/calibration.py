from typing import Optional, Sequence

import numpy as np
import pandas as pd

from pit_nonresponse.config import CALIBRATION_BIN_EDGES


def calibration_bins(
    y_true, y_prob, edges: Sequence[float] = CALIBRATION_BIN_EDGES, sample_weight: Optional[np.ndarray] = None
) -> pd.DataFrame:
    """Predicted vs observed non-response by fixed probability bins.

    Bins are left-closed ([0, .1), [.1, .2), ...) except the last, which also
    includes its upper edge. Empty bins are kept with NaN rates.
    """

    y = np.asarray(y_true, dtype=float)
    p = np.asarray(y_prob, dtype=float)
    w = np.ones_like(p) if sample_weight is None else np.asarray(sample_weight, dtype=float)
    edges = list(edges)

    # Interior edges only, so values equal to the final edge land in the last bin.
    bin_idx = np.digitize(p, edges[1:-1], right=False)

    rows = []
    for i in range(len(edges) - 1):
        mask = bin_idx == i
        w_bin = w[mask]
        w_sum = float(w_bin.sum())
        closing = "]" if i == len(edges) - 2 else ")"
        rows.append(
            {
                "bin": f"[{edges[i]:.1f}, {edges[i + 1]:.1f}{closing}",
                "lower": edges[i],
                "upper": edges[i + 1],
                "n": int(mask.sum()),
                "weighted_n": w_sum,
                "mean_predicted": float(np.sum(w_bin * p[mask]) / w_sum) if w_sum > 0 else np.nan,
                "observed_rate": float(np.sum(w_bin * y[mask]) / w_sum) if w_sum > 0 else np.nan,
            }
        )
    out = pd.DataFrame(rows)
    out["difference"] = out["observed_rate"] - out["mean_predicted"]
    return out
