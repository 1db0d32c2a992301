"""CLI that runs one pipeline turn locally and prints its frames and final snapshot."""

import argparse
import asyncio
import json
import uuid
from typing import List, Optional, Sequence

from dotenv import load_dotenv

from .core.config import ChatConfig
from .core.debug_log import DebugLogBuffer
from .core.orchestrator import PipelineOrchestrator
from .core.types import ChatMessage, ConversationTurn
from .protocol.channel import FrameChannel
from .protocol.frames import Frame, frame_to_dict
from .protocol.strategies import FixtureTurnRunner, TurnRunner
from .reasoning.snapshot import snapshot_from_frames


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run one chat pipeline turn from CLI and print its frames")
    parser.add_argument("--message", required=True, help="User message for the turn")
    parser.add_argument("--reasoning", action="store_true", help="Emit reasoning frames")
    parser.add_argument("--fixtures", action="store_true", help="Replay fixture frames instead of live collaborators")
    parser.add_argument("--client-key", default="127.0.0.1")
    return parser


def build_turn(message: str, reasoning_enabled: bool, app_id: str) -> ConversationTurn:
    return ConversationTurn(
        conversation_id=f"cli-{uuid.uuid4().hex[:8]}",
        anchor_id=uuid.uuid4().hex,
        messages=[ChatMessage(role="user", content=message)],
        reasoning_enabled=reasoning_enabled,
        app_id=app_id,
    )


async def run_turn(runner: TurnRunner, turn: ConversationTurn, client_key: str) -> List[Frame]:
    channel = FrameChannel(turn.anchor_id)
    task = asyncio.create_task(runner.run(turn, channel, client_key=client_key))
    frames: List[Frame] = []
    async for frame in channel:
        frames.append(frame)
        print(json.dumps(frame_to_dict(frame), sort_keys=True))
    await task
    return frames


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    config = ChatConfig.from_env()
    if args.fixtures:
        runner: TurnRunner = FixtureTurnRunner()
    else:
        runner = PipelineOrchestrator.from_config(config, debug_log=DebugLogBuffer.from_config(config))

    turn = build_turn(args.message, args.reasoning, config.app_id)
    frames = asyncio.run(run_turn(runner, turn, args.client_key))
    snapshot = snapshot_from_frames(frames)

    print(f"mode={'fixtures' if args.fixtures else 'live'}")
    print(f"frames={snapshot.frame_count}")
    stages = {stage: record.status for stage, record in snapshot.stages.items()}
    print(f"stages={stages}")
    if snapshot.error is not None:
        print(f"error={snapshot.error.to_dict()}")
    print("answer:")
    print(snapshot.text)
    if snapshot.trace is not None:
        print("trace:")
        print(json.dumps(snapshot.trace.to_dict(), indent=2, sort_keys=True))
    return 0 if snapshot.error is None else 1


if __name__ == "__main__":
    raise SystemExit(main())
