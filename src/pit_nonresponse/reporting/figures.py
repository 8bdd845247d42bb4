from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from sklearn.metrics import roc_auc_score, roc_curve


def save_figure(fig, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=300, bbox_inches="tight")
    plt.close(fig)


def plot_disposition_flow(counts: pd.DataFrame, path: Path) -> None:
    """Horizontal bars for the screening flow, approached at the top."""

    fig, ax = plt.subplots(figsize=(8, 5))
    y = np.arange(len(counts))[::-1]
    ax.barh(y, counts["n"], color="#3B5BA5")
    ax.set_yticks(y)
    ax.set_yticklabels(counts["disposition"])
    for yi, n in zip(y, counts["n"]):
        ax.text(n, yi, f" {int(n)}", va="center", fontsize=9)
    ax.set_xlabel("Records")
    ax.set_title("Record Disposition (Unweighted)")
    fig.tight_layout()
    save_figure(fig, path)


def plot_eligibility_comparison(table: pd.DataFrame, dimension: str, path: Path) -> None:
    sub = table.loc[table["dimension"] == dimension]
    x = np.arange(len(sub))
    width = 0.38
    fig, ax = plt.subplots(figsize=(8, 5))
    ax.bar(x - width / 2, sub["share_determined"], width, label="Eligibility determined")
    ax.bar(x + width / 2, sub["share_undetermined"], width, label="Eligibility not determined")
    ax.set_xticks(x)
    ax.set_xticklabels(sub["category"], rotation=30, ha="right")
    ax.set_ylabel("Share")
    ax.set_ylim(0, 1)
    ax.set_title(f"Perceived {dimension} by Eligibility Determination")
    ax.legend()
    fig.tight_layout()
    save_figure(fig, path)


def plot_roc(y_true, y_prob, path: Path, title: str, sample_weight=None) -> None:
    fpr, tpr, _ = roc_curve(y_true, y_prob, sample_weight=sample_weight)
    auc = roc_auc_score(y_true, y_prob, sample_weight=sample_weight)
    fig, ax = plt.subplots(figsize=(6, 5))
    ax.plot(fpr, tpr, linewidth=2, label=f"AUC={auc:.3f}")
    ax.plot([0, 1], [0, 1], "--", color="gray", linewidth=1)
    ax.set_title(title)
    ax.set_xlabel("False positive rate")
    ax.set_ylabel("True positive rate")
    ax.set_xlim(0, 1)
    ax.set_ylim(0, 1)
    ax.legend()
    fig.tight_layout()
    save_figure(fig, path)


def plot_calibration_bins(bins: pd.DataFrame, path: Path, title: str) -> None:
    shown = bins.loc[bins["n"] > 0]
    fig, ax = plt.subplots(figsize=(6, 5))
    ax.plot([0, 1], [0, 1], "--", color="gray", linewidth=1, label="Ideal")
    ax.plot(shown["mean_predicted"], shown["observed_rate"], marker="o", linewidth=2, label="Test split")
    for _, row in shown.iterrows():
        ax.annotate(f"n={int(row['n'])}", (row["mean_predicted"], row["observed_rate"]), fontsize=8)
    ax.set_title(title)
    ax.set_xlabel("Mean predicted non-response")
    ax.set_ylabel("Observed non-response")
    ax.set_xlim(0, 1)
    ax.set_ylim(0, 1)
    ax.legend()
    fig.tight_layout()
    save_figure(fig, path)
