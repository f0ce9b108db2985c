"""
Generate a synthetic raw Wi-Fi fingerprint survey.

Creates raw calibration captures (one fingerprint per capture event) with:
    - Reference points on a regular grid, several floors
    - Repeated captures per reference point (merged later by the cache builder)
    - Log-distance path-loss model with shadow fading
    - Access points dropping out of individual scans (sparse features)
    - Optional survey position jitter (exercises grid group keys)

Saves to: data/sim/wifi_fingerprint_survey/
    fingerprints.json   raw captures (explicit fingerprint schema)
    metadata.json       AP positions and model parameters

Author: Navigation Engineer
Date: 2026
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Tuple

import numpy as np

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from ipscore.fingerprinting import (
    Fingerprint,
    FingerprintingOptions,
    Position,
    grid_group_key,
    load_fingerprints,
    rebuild_cache,
    save_fingerprints,
    validate_generation,
)

logger = logging.getLogger(__name__)


PRESETS = {
    "baseline": {
        "description": "5m grid, 8 APs, 2 floors, 5 captures/RP",
        "grid_spacing": 5.0,
        "n_aps": 8,
        "n_floors": 2,
        "n_captures": 5,
        "dropout": 0.1,
        "jitter": 0.0,
    },
    "dense": {
        "description": "2m grid, 8 APs, 1 floor, 3 captures/RP",
        "grid_spacing": 2.0,
        "n_aps": 8,
        "n_floors": 1,
        "n_captures": 3,
        "dropout": 0.1,
        "jitter": 0.0,
    },
    "sparse_aps": {
        "description": "5m grid, 4 APs, heavy dropout",
        "grid_spacing": 5.0,
        "n_aps": 4,
        "n_floors": 1,
        "n_captures": 5,
        "dropout": 0.4,
        "jitter": 0.0,
    },
    "jitter": {
        "description": "5m grid with 5cm survey position jitter",
        "grid_spacing": 5.0,
        "n_aps": 8,
        "n_floors": 1,
        "n_captures": 5,
        "dropout": 0.1,
        "jitter": 0.05,
    },
}


def log_distance_path_loss(
    d: np.ndarray,
    P0: float = -30.0,
    d0: float = 1.0,
    n: float = 2.5,
    sigma: float = 4.0,
    rng: np.random.Generator = None,
) -> np.ndarray:
    """
    Compute RSS with the log-distance path-loss model.

    Model: P(d) = P0 - 10*n*log10(d/d0) + X_sigma

    Args:
        d: Distances from APs (meters).
        P0: Reference power at distance d0 (dBm).
        d0: Reference distance (meters).
        n: Path-loss exponent (2.0 = free space, 2-4 = indoor).
        sigma: Shadow fading standard deviation (dBm).
        rng: Random generator for shadow fading.

    Returns:
        RSS in dBm, same shape as d.
    """
    d = np.maximum(np.asarray(d, dtype=float), 0.1)
    rss = P0 - 10 * n * np.log10(d / d0)
    if sigma > 0:
        rng = rng if rng is not None else np.random.default_rng()
        rss = rss + rng.normal(0.0, sigma, size=rss.shape)
    return rss


def access_point_layout(width: float, height: float, n_aps: int) -> Tuple[np.ndarray, List[str]]:
    """APs at the corners and mid-walls of the ground floor, 2.5m high."""
    layout = np.array([
        [0, 0, 2.5],
        [width, 0, 2.5],
        [width, height, 2.5],
        [0, height, 2.5],
        [width / 2, 0, 2.5],
        [width / 2, height, 2.5],
        [0, height / 2, 2.5],
        [width, height / 2, 2.5],
    ])
    if n_aps > len(layout):
        raise ValueError(f"n_aps must be <= {len(layout)}, got {n_aps}")
    return layout[:n_aps], [f"AP{i + 1}" for i in range(n_aps)]


def simulate_scan(
    location: np.ndarray,
    ap_positions: np.ndarray,
    floor_attenuation: float,
    floor_height: float,
    sigma: float,
    rng: np.random.Generator,
) -> np.ndarray:
    """Simulate one RSS scan (dBm per AP) at a 3D location."""
    distances = np.linalg.norm(ap_positions - location, axis=1)
    floor_diff = np.abs(np.floor(location[2] / floor_height) - np.floor(ap_positions[:, 2] / floor_height))
    return log_distance_path_loss(distances, sigma=sigma, rng=rng) - floor_diff * floor_attenuation


def generate_fingerprint_survey(
    area_size: tuple = (30.0, 30.0),
    grid_spacing: float = 5.0,
    n_floors: int = 2,
    floor_height: float = 3.0,
    n_aps: int = 8,
    n_captures: int = 5,
    dropout: float = 0.1,
    jitter: float = 0.0,
    sigma: float = 4.0,
    floor_attenuation: float = 15.0,
    seed: int = 42,
) -> Tuple[List[Fingerprint], dict]:
    """
    Generate raw fingerprint captures.

    Args:
        area_size: (width, height) in meters.
        grid_spacing: Distance between reference points (meters).
        n_floors: Number of floors.
        floor_height: Height of each floor (meters).
        n_aps: Number of access points (<= 8).
        n_captures: Capture events per reference point.
        dropout: Probability that an AP is missing from a scan.
        jitter: Std of the recorded position noise (meters).
        sigma: Shadow fading std (dBm).
        floor_attenuation: Attenuation per floor (dB).
        seed: Random seed.

    Returns:
        Tuple (fingerprints, metadata).
    """
    if not 0.0 <= dropout < 1.0:
        raise ValueError(f"dropout must be in [0, 1), got {dropout}")

    rng = np.random.default_rng(seed)
    width, height = area_size
    ap_positions, ap_ids = access_point_layout(width, height, n_aps)

    x_coords = np.arange(0, width + grid_spacing / 2, grid_spacing)
    y_coords = np.arange(0, height + grid_spacing / 2, grid_spacing)

    print(f"\n{'='*60}")
    print("Generating Wi-Fi Fingerprint Survey")
    print(f"{'='*60}")
    print(f"Area size: {width}m x {height}m, grid spacing {grid_spacing}m")
    print(f"Reference points per floor: {len(x_coords) * len(y_coords)}")
    print(f"Floors: {n_floors}, APs: {n_aps}, captures/RP: {n_captures}")
    print(f"AP dropout: {dropout:.0%}, position jitter: {jitter}m")

    fingerprints = []
    timestamp = 0.0
    for floor_id in range(n_floors):
        z = floor_id * floor_height + 1.5
        for x in x_coords:
            for y in y_coords:
                for _ in range(n_captures):
                    rss = simulate_scan(
                        np.array([x, y, z]), ap_positions, floor_attenuation,
                        floor_height, sigma, rng,
                    )
                    recorded = np.array([x, y, z])
                    if jitter > 0:
                        recorded[:2] += rng.normal(0.0, jitter, size=2)

                    fingerprint = Fingerprint(
                        position=Position(recorded, floor_id=floor_id),
                        classifier="wlan",
                        created_timestamp=timestamp,
                    )
                    visible = rng.random(n_aps) >= dropout
                    for ap_id, value, seen in zip(ap_ids, rss, visible):
                        if seen:
                            fingerprint.add_feature(ap_id, round(float(value), 1))
                    timestamp += 1.0
                    if fingerprint.features:
                        fingerprints.append(fingerprint)

    print(f"Generated {len(fingerprints)} raw captures")

    metadata = {
        "ap_ids": ap_ids,
        "ap_positions": ap_positions.tolist(),
        "area_size": list(area_size),
        "grid_spacing": grid_spacing,
        "n_floors": n_floors,
        "floor_height": floor_height,
        "n_captures": n_captures,
        "dropout": dropout,
        "jitter": jitter,
        "default_value": -100.0,
        "path_loss_model": {
            "type": "log_distance",
            "P0_dBm": -30.0,
            "path_loss_exponent": 2.5,
            "shadow_fading_std_dBm": sigma,
            "floor_attenuation_dB": floor_attenuation,
        },
        "unit": "dBm",
        "classifier": "wlan",
        "seed": seed,
    }
    return fingerprints, metadata


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Generate a synthetic raw Wi-Fi fingerprint survey",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="\n".join(
            ["Presets:"] + [f"  {name:<12}{p['description']}" for name, p in PRESETS.items()]
        ),
    )
    parser.add_argument("--preset", choices=sorted(PRESETS), default="baseline",
                        help="Preset configuration (default: baseline)")
    parser.add_argument("--output", type=str, default="data/sim/wifi_fingerprint_survey",
                        help="Output directory (default: data/sim/wifi_fingerprint_survey)")
    parser.add_argument("--area-width", type=float, default=30.0, help="Area width in meters")
    parser.add_argument("--area-height", type=float, default=30.0, help="Area height in meters")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument("--log-level", default="WARNING",
                        help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    preset = PRESETS[args.preset]
    fingerprints, metadata = generate_fingerprint_survey(
        area_size=(args.area_width, args.area_height),
        grid_spacing=preset["grid_spacing"],
        n_floors=preset["n_floors"],
        n_aps=preset["n_aps"],
        n_captures=preset["n_captures"],
        dropout=preset["dropout"],
        jitter=preset["jitter"],
        seed=args.seed,
    )
    metadata["preset"] = args.preset

    output_path = Path(args.output)
    output_path.mkdir(parents=True, exist_ok=True)
    save_fingerprints(fingerprints, output_path / "fingerprints.json")
    with open(output_path / "metadata.json", "w", encoding="utf-8") as f:
        json.dump(metadata, f, indent=2)
    print(f"\nOK Saved to: {output_path}")

    # Reload and build a cache to validate the survey
    print(f"\n{'='*60}")
    print("Validating survey...")
    reloaded = load_fingerprints(output_path / "fingerprints.json")
    options = FingerprintingOptions(
        classifier="wlan",
        default_value=metadata["default_value"],
        group_by=grid_group_key(0.5) if preset["jitter"] > 0 else FingerprintingOptions().group_by,
    )
    generation = rebuild_cache(
        reloaded,
        group_by=options.group_by,
        agg_fn=options.agg_fn,
        default_value=options.default_value,
        classifier=options.classifier,
    )
    result = validate_generation(generation)
    print(f"  Raw captures:   {len(reloaded)}")
    print(f"  Cache entries:  {result['stats']['n_fingerprints']}")
    print(f"  References:     {result['stats']['n_references']}")
    print(f"  Valid:          {result['valid']}")
    for warning in result["warnings"]:
        print(f"  Warning: {warning}")
    for error in result["errors"]:
        logger.error("%s", error)


if __name__ == "__main__":
    main()
