from __future__ import annotations

import argparse
import asyncio
import logging
from dataclasses import replace
from typing import Callable, Optional, Sequence

from medscribe.asr.formatting import format_for_display
from medscribe.internal_core.config import ScribeConfig, load_config

from .recording_session import RecordingSession

logger = logging.getLogger(__name__)

SessionFactory = Callable[..., RecordingSession]


async def record_consultation(
    cfg: ScribeConfig,
    seconds: float,
    *,
    session_factory: SessionFactory = RecordingSession.from_config,
    on_line: Callable[[str], None] = print,
) -> str:
    """Record for `seconds`, run the batch pass and return the display transcript."""
    session = session_factory(
        cfg,
        on_notice=lambda message: on_line(f"[notice] {message}"),
        on_patient=lambda patient: on_line(f"[patient] {patient.name}"),
    )
    try:
        await session.preconnect()
        await session.start()
        await asyncio.sleep(max(0.0, seconds))
        await session.stop()
        return format_for_display(session.session.committed_utterances)
    finally:
        await session.teardown()


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Record a consultation from the default microphone")
    parser.add_argument("--seconds", type=float, default=30.0, help="Recording length in seconds.")
    parser.add_argument("--streaming-url", default=None, help="Override SCRIBE_STREAMING_URL.")
    parser.add_argument(
        "--no-batch",
        action="store_true",
        help="Skip batch diarization and keep the live utterances.",
    )
    args = parser.parse_args(argv)

    cfg = load_config()
    if args.streaming_url is not None:
        cfg = replace(cfg, SCRIBE_STREAMING_URL=args.streaming_url)
    if args.no_batch:
        cfg = replace(cfg, SCRIBE_BATCH_DIARIZATION_ENABLED=False)
    logging.basicConfig(level=cfg.SCRIBE_LOG_LEVEL.upper())

    logger.info("recording_started seconds=%s batch=%s", args.seconds, cfg.SCRIBE_BATCH_DIARIZATION_ENABLED)
    text = asyncio.run(record_consultation(cfg, args.seconds))
    print(text or "(no speech captured)")


if __name__ == "__main__":
    main()
