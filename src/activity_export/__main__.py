"""
Command-line entrypoint: export an activity JSON file to FIT or GPX.

Usage:
    python -m activity_export activity.json --format fit
    python -m activity_export activity.json --format gpx --output ride.gpx
    python -m activity_export activity.json --format fit --sport "Trail Run"
    python -m activity_export --list-sports

The input is one JSON object: name, start_date (ISO-8601), optional
sport_type / calories / id, and streams keyed by type (latlng, time,
altitude, heartrate, cadence, watts, velocity_smooth).
"""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="activity_export",
        description="Export GPS activity streams to FIT or GPX.",
    )
    parser.add_argument("input", nargs="?", type=Path, help="activity JSON file")
    parser.add_argument("--format", "-f", choices=["fit", "gpx"], default="fit")
    parser.add_argument("--output", "-o", type=Path, help="output path (default: generated filename)")
    parser.add_argument("--sport", help="sport label or FIT sport number (overrides sport_type)")
    parser.add_argument("--activity-id", help="id used in the generated filename")
    parser.add_argument("--list-sports", action="store_true", help="print the FIT sport table and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    return parser


def _list_sports() -> None:
    from activity_export.fit.profile import SPORT_NAMES

    for number, name in sorted(SPORT_NAMES.items()):
        print(f"{int(number):3d}  {name}")


def main(argv: Optional[List[str]] = None) -> int:
    from activity_export.config import get_settings
    from activity_export.errors import ActivityExportError
    from activity_export.export import export_activity
    from activity_export.models.request import ActivityPayload

    args = _build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.list_sports:
        _list_sports()
        return 0

    if args.input is None:
        logger.error("No input file given.")
        return 2

    try:
        raw = json.loads(args.input.read_text(encoding="utf-8-sig"))
        payload = ActivityPayload.model_validate(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        logger.error("Could not read %s: %s", args.input, exc)
        return 1

    settings = get_settings()
    try:
        request = payload.to_request(settings=settings, sport_override=args.sport)
        activity_id = args.activity_id if args.activity_id is not None else payload.id
        artifact = export_activity(request, args.format, activity_id=activity_id, settings=settings)
    except ActivityExportError as exc:
        logger.error("Export failed: %s", exc)
        return 1

    output = args.output or Path(artifact.filename)
    output.write_bytes(artifact.content)
    logger.info("Wrote %s (%s, %d bytes)", output, artifact.media_type, artifact.size)
    return 0


if __name__ == "__main__":
    sys.exit(main())
