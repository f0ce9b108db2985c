"""
Example: KNN Fingerprinting with a k-d tree index

Demonstrates the full offline/online fingerprinting workflow:
    - Offline: raw survey captures are stored and rebuilt into a cache
      (grouping repeated captures, gap filling missing APs)
    - Online: live scans are positioned by k-NN matching against the cache,
      naive vs. k-d tree, unweighted vs. weighted combination

Requires a survey generated with:
    python scripts/generate_fingerprint_dataset.py --preset baseline

Author: Navigation Engineer
Date: 2026
"""

import json
import sys
import time
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
from tqdm import tqdm

sys.path.insert(0, str(Path(__file__).parent.parent))

from ipscore.fingerprinting import (
    FingerprintService,
    FingerprintingOptions,
    KNNFingerprinting,
    KNNOptions,
    Measurement,
    MemoryFingerprintStore,
    WeightFunction,
    load_fingerprints,
    print_generation_summary,
)


def generate_test_scans(metadata, n_queries=200, floor_id=0, noise_std=2.0, dropout=0.1, seed=7):
    """
    Generate live scans at random positions using the survey's path-loss model.

    Returns:
        Tuple (measurements, true_locations) with true_locations shape (n, 2).
    """
    rng = np.random.default_rng(seed)
    model = metadata["path_loss_model"]
    ap_positions = np.array(metadata["ap_positions"])
    width, height = metadata["area_size"]
    z = floor_id * metadata["floor_height"] + 1.5

    true_locs = np.column_stack([
        rng.uniform(0, width, n_queries),
        rng.uniform(0, height, n_queries),
    ])

    measurements = []
    for x, y in true_locs:
        d = np.maximum(np.linalg.norm(ap_positions - np.array([x, y, z]), axis=1), 0.1)
        rss = model["P0_dBm"] - 10 * model["path_loss_exponent"] * np.log10(d)
        rss -= floor_id * model["floor_attenuation_dB"]
        rss += rng.normal(0.0, noise_std, size=rss.shape)
        visible = rng.random(len(rss)) >= dropout
        readings = {ap: float(v) for ap, v, seen in zip(metadata["ap_ids"], rss, visible) if seen}
        measurements.append(Measurement(readings))

    return measurements, true_locs


def evaluate(name, knn, measurements, true_locs):
    """Position every scan and collect error statistics."""
    errors = []
    times = []
    unresolved = 0

    for measurement, true_loc in tqdm(list(zip(measurements, true_locs)), desc=name, leave=False):
        query = Measurement(dict(measurement.readings))
        t_start = time.perf_counter()
        knn.estimate(query)
        times.append((time.perf_counter() - t_start) * 1000)
        if query.position is None:
            unresolved += 1
            continue
        errors.append(np.linalg.norm(query.position.coordinates[:2] - true_loc))

    errors = np.array(errors)
    results = {
        "method": name,
        "errors": errors,
        "rmse": np.sqrt(np.mean(errors**2)),
        "median_error": np.median(errors),
        "p90": np.percentile(errors, 90),
        "mean_time_ms": np.mean(times),
        "unresolved": unresolved,
    }
    print(f"  {name:<28} RMSE {results['rmse']:.2f}m  median {results['median_error']:.2f}m  "
          f"p90 {results['p90']:.2f}m  {results['mean_time_ms']:.3f}ms")
    return results


def main():
    """Run the KNN fingerprinting example."""
    print("=" * 70)
    print("KNN Fingerprinting (k-d tree vs. naive, weighted vs. unweighted)")
    print("=" * 70)

    data_dir = Path("data/sim/wifi_fingerprint_survey")
    if not (data_dir / "fingerprints.json").exists():
        print(f"\nSurvey not found in {data_dir}.")
        print("Generate it first: python scripts/generate_fingerprint_dataset.py")
        return

    with open(data_dir / "metadata.json", "r", encoding="utf-8") as f:
        metadata = json.load(f)

    # Offline phase
    print("\n1. Building the calibration cache...")
    store = MemoryFingerprintStore(load_fingerprints(data_dir / "fingerprints.json"))
    service = FingerprintService(
        store,
        FingerprintingOptions(classifier=metadata["classifier"], default_value=metadata["default_value"]),
    )
    print(f"   Raw captures: {len(store)}")

    configurations = {
        "NN (k-d tree)": KNNOptions(k=1),
        "k-NN k=4 (naive)": KNNOptions(k=4, naive=True),
        "k-NN k=4 (k-d tree)": KNNOptions(k=4),
        "k-NN k=4 weighted 1/d": KNNOptions(k=4, weighted=True),
        "k-NN k=4 weighted 1/d^2": KNNOptions(k=4, weighted=True, weight_fn=WeightFunction.SQUARE),
    }
    estimators = {name: KNNFingerprinting(service, options) for name, options in configurations.items()}

    t_start = time.perf_counter()
    generation = service.update()
    print(f"   Rebuild took {(time.perf_counter() - t_start) * 1000:.1f}ms")
    print()
    print_generation_summary(generation)

    # Online phase
    print("\n2. Positioning live scans on floor 0...")
    measurements, true_locs = generate_test_scans(metadata, floor_id=0)
    results = [evaluate(name, knn, measurements, true_locs) for name, knn in estimators.items()]

    # Visualize
    print("\n3. Generating visualizations...")
    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(13, 5))

    surveyed = np.array([fp.position.coordinates for fp in generation.fingerprints if fp.position.floor_id == 0])
    ax1.scatter(surveyed[:, 0], surveyed[:, 1], c="blue", marker="s", s=40, alpha=0.6, label="Cache entries")
    ax1.scatter(true_locs[:50, 0], true_locs[:50, 1], c="red", marker="x", s=30, label="Test scans (sample)")
    ax1.set_xlabel("X (m)")
    ax1.set_ylabel("Y (m)")
    ax1.set_title("Calibration Cache & Test Scans")
    ax1.legend()
    ax1.grid(True, alpha=0.3)
    ax1.axis("equal")

    for r in results:
        sorted_errors = np.sort(r["errors"])
        cdf = np.arange(1, len(sorted_errors) + 1) / len(sorted_errors)
        ax2.plot(sorted_errors, cdf, label=r["method"], linewidth=2)
    ax2.set_xlabel("Positioning Error (m)")
    ax2.set_ylabel("CDF")
    ax2.set_title("Cumulative Distribution of Errors")
    ax2.legend(fontsize=8)
    ax2.grid(True, alpha=0.3)

    plt.tight_layout()
    output_file = Path("examples/knn_fingerprinting.png")
    plt.savefig(output_file, dpi=150, bbox_inches="tight")
    print(f"   Saved: {output_file}")
    plt.show()

    print("\nKey Findings:")
    print("  - Naive and k-d tree matching return the same neighbours")
    print("  - Averaging k neighbours smooths the discrete NN estimate")
    print("  - Distance weighting pulls the estimate toward close matches")


if __name__ == "__main__":
    main()
