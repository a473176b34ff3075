#!/usr/bin/env python3
"""
Fetch one image for a point/date from a provider and write it to disk.

    python -m scripts.fetch_imagery --provider gibs --lat 40.7128 --lon -74.0060 \
        --date 2023-01-01 --resolution 1024 --out out.jpg

When the provider has nothing for the date, the candidate dates are printed
and the script exits with status 2; a failure exits with status 1.
"""

import argparse
import json
import os
import sys
from datetime import time
from pathlib import Path

# Add the project root to the path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from common.config import load_config
from common.hooks import LoggingHooks
from common.logging_setup import setup_logging
from common.types import ImageRequest, Provider, ResponseStatus
from common.utils import parse_date
from imagery.orchestrator import build_orchestrator


def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    ap.add_argument("--provider", required=True, choices=[p.value for p in Provider])
    ap.add_argument("--lat", type=float, required=True)
    ap.add_argument("--lon", type=float, required=True)
    ap.add_argument("--date", required=True, help="YYYY-MM-DD")
    ap.add_argument("--time", default=None, help="HH:MM[:SS] UTC, used for scene selection")
    ap.add_argument("--dim", type=float, default=0.2, help="Field of view in degrees")
    ap.add_argument("--resolution", type=int, default=1024, help="Output side in pixels")
    ap.add_argument("--max-cloud-cover", type=float, default=None)
    ap.add_argument("--layer", default=None, help="GIBS layer identifier")
    ap.add_argument("--config", default="config/params.yaml")
    ap.add_argument("--out", default=None, help="Output file (default: <provider>_<date>.<ext>)")
    return ap.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    cfg = load_config(args.config)
    setup_logging(cfg.logging.level, force=True)

    orchestrator, init_errors = build_orchestrator(cfg, hooks=LoggingHooks())
    if args.provider in init_errors:
        print(f" Error: provider {args.provider} unavailable: {init_errors[args.provider]}", file=sys.stderr)
        return 1

    if args.provider == Provider.GIBS.value and args.resolution > cfg.gibs.max_resolution:
        print(f" Error: --resolution must be <= {cfg.gibs.max_resolution} for gibs", file=sys.stderr)
        return 1

    try:
        request = ImageRequest(
            latitude=args.lat,
            longitude=args.lon,
            requested_date=parse_date(args.date),
            provider=Provider(args.provider),
            requested_time=time.fromisoformat(args.time) if args.time else None,
            field_of_view_degrees=args.dim,
            output_resolution_pixels=args.resolution,
            max_cloud_cover=args.max_cloud_cover,
            layer=args.layer,
        )
    except ValueError as e:
        print(f" Error: invalid request: {e}", file=sys.stderr)
        return 1

    resp = orchestrator.handle(request)

    if resp.ok and resp.image is not None:
        ext = "jpg" if resp.image.media_type == "image/jpeg" else "png"
        out = Path(args.out or f"{args.provider}_{request.requested_date.isoformat()}.{ext}")
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(resp.image.data)
        print(f"  Saved {out} ({len(resp.image.data)} bytes, {resp.image.width}x{resp.image.height})")
        if resp.resolved_date and resp.resolved_date != request.requested_date:
            print(f"  Closest published date: {resp.resolved_date.isoformat()}")
        if resp.status is ResponseStatus.SUCCESS_FALLBACK:
            print(f"  Fetched without an availability check: {resp.reason}")
        return 0

    if resp.status is ResponseStatus.UNAVAILABLE and resp.availability is not None:
        print(f"  No imagery for {request.requested_date.isoformat()} ({resp.reason})")
        print(json.dumps(resp.availability.to_dict(), indent=2))
        return 2

    print(f" Error: {resp.reason} (retryable={resp.retryable})", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
