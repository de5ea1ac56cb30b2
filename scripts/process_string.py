from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from jobstream.client.session import ProcessingSession
from jobstream.core.config import get_settings
from jobstream.core.credentials import FileCredentialProvider, StaticCredentialProvider
from jobstream.core.logging import configure_logging
from jobstream.jobs.service import InvalidJobInputError, snapshot_to_dict
from jobstream.jobs.types import JobSnapshot, JobState


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Submit a string-processing job and stream the result")
    parser.add_argument("input", help="Input string to process")
    parser.add_argument("--token", help="Access token (overrides JOBSTREAM_ACCESS_TOKEN)")
    parser.add_argument("--credential-file", type=Path, help="JSON session file holding accessToken")
    parser.add_argument("--json", action="store_true", help="Print the final job state as JSON")
    parser.add_argument("--log-level", default=None, help="Override JOBSTREAM_LOG_LEVEL")
    return parser.parse_args()


class ProgressPrinter:
    def __init__(self) -> None:
        self._printed = 0

    def __call__(self, snapshot: JobSnapshot) -> None:
        if snapshot.state == JobState.CANCELLED:
            self._printed = 0
            return
        text = snapshot.assembled_text
        if len(text) > self._printed:
            sys.stdout.write(text[self._printed :])
            sys.stdout.flush()
            self._printed = len(text)


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(args.log_level or settings.log_level)

    provider = None
    if args.credential_file is not None:
        provider = FileCredentialProvider(args.credential_file)
    elif args.token:
        provider = StaticCredentialProvider(args.token)

    async with ProcessingSession.from_settings(settings, provider) as session:
        session.machine.on_change(ProgressPrinter())
        try:
            snapshot = await session.submit(args.input)
            if snapshot.state != JobState.FAILED:
                snapshot = await session.wait_for_terminal()
        except InvalidJobInputError as exc:
            print(str(exc), file=sys.stderr)
            return 2
        except asyncio.CancelledError:
            await session.cancel()
            raise

    print()
    if args.json:
        print(json.dumps(snapshot_to_dict(snapshot), indent=2))
    if snapshot.state == JobState.COMPLETED:
        return 0
    if snapshot.last_error:
        print(snapshot.last_error, file=sys.stderr)
    elif snapshot.state == JobState.CANCELLED:
        print("Processing cancelled", file=sys.stderr)
    return 1


def main() -> None:
    args = parse_args()
    try:
        code = asyncio.run(run(args))
    except KeyboardInterrupt:
        code = 130
    raise SystemExit(code)


if __name__ == "__main__":
    main()
