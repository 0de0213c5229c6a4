"""
figurine-forge command line interface.

Usage:
    figurine-forge submit --owner user-1 --prompt "a red dragon" --wait
    figurine-forge submit --owner user-1 --image ./dragon.png --art-style cartoon
    figurine-forge status <task_id>
    figurine-forge wait <task_id>
    figurine-forge resume --owner user-1
    figurine-forge recover --owner user-1
    figurine-forge init-db

JSON results are printed on stdout, logs go to stderr. Exit codes:
0 succeeded or still running, 1 failed or timed out, 2 invalid input.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import mimetypes
import sys
from pathlib import Path
from typing import Any, Optional

import pydantic
from loguru import logger

from forge_core.config import settings
from forge_core.conversions.models import (
    ArtStyle,
    OutcomeKind,
    PollOutcome,
    StatusReport,
    TaskKind,
    TaskStatus,
    Topology,
    TextureRichness,
)
from forge_core.domain.exceptions import ValidationError
from forge_core.infrastructure.postgres import ensure_schema
from forge_core.logging import setup_logging
from forge_core.runtime import ServiceError

from app.conversion import factory
from app.conversion.services.submitter import SubmitRequest

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _exit_code_for_status(status: TaskStatus) -> int:
    if status in (TaskStatus.FAILED, TaskStatus.TIMED_OUT):
        return EXIT_FAILED
    return EXIT_OK


def _exit_code_for_error(error: ServiceError) -> int:
    return EXIT_INVALID if isinstance(error, ValidationError) else EXIT_FAILED


def _print_progress(report: StatusReport) -> None:
    logger.info(
        f"[{report.task_id}] {report.status.value} {report.progress_percent}% "
        f"(download {report.download_status.value})"
    )


def build_config(args: argparse.Namespace) -> dict[str, Any]:
    """Generation options given on the command line."""
    config: dict[str, Any] = {}
    if args.art_style:
        config["art_style"] = args.art_style
    if args.ai_model:
        config["ai_model"] = args.ai_model
    if args.topology:
        config["topology"] = args.topology
    if args.polycount is not None:
        config["target_polycount"] = args.polycount
    if args.texture_richness:
        config["texture_richness"] = args.texture_richness
    if args.no_moderation:
        config["moderation"] = False
    if args.negative_prompt:
        config["negative_prompt"] = args.negative_prompt
    return config


def build_request(args: argparse.Namespace) -> SubmitRequest:
    """
    Turn `submit` arguments into a SubmitRequest.

    `--image` accepts a local file path, an http(s) URL or a data URI.
    """
    config = build_config(args)
    if args.prompt is not None:
        return SubmitRequest(
            kind=TaskKind.TEXT_TO_3D, owner_id=args.owner, prompt=args.prompt, config=config
        )

    image: str = args.image
    path = Path(image)
    if not image.startswith(("http://", "https://", "data:")) and path.is_file():
        mime, _ = mimetypes.guess_type(path.name)
        return SubmitRequest(
            kind=TaskKind.IMAGE_TO_3D,
            owner_id=args.owner,
            image_bytes=path.read_bytes(),
            image_mime_type=mime,
            config=config,
        )
    return SubmitRequest(kind=TaskKind.IMAGE_TO_3D, owner_id=args.owner, image_url=image, config=config)


def _outcome_exit_code(outcome: PollOutcome) -> int:
    if outcome.kind == OutcomeKind.CANCELLED:
        return _exit_code_for_status(outcome.report.status)
    return EXIT_OK


async def _wait(task_id: str, vendor) -> int:
    poller = factory.get_status_poller(vendor=vendor)
    try:
        outcome = await poller.poll(task_id, on_progress=_print_progress)
    finally:
        await poller.artifact_store.close()
    _emit(outcome.to_dict())
    return _outcome_exit_code(outcome)


async def cmd_submit(args: argparse.Namespace) -> int:
    request = build_request(args)
    vendor = factory.get_vendor_client()
    try:
        submitter = factory.get_submitter(vendor=vendor)
        task_id = await submitter.submit(request)
        _emit({"task_id": task_id})
        if not args.wait:
            return EXIT_OK
        return await _wait(task_id, vendor)
    finally:
        await vendor.close()


async def cmd_status(args: argparse.Namespace) -> int:
    vendor = factory.get_vendor_client()
    poller = factory.get_status_poller(vendor=vendor)
    try:
        report = await poller.check_once(args.task_id, refresh=True)
    finally:
        await poller.artifact_store.close()
        await vendor.close()
    _emit(report.to_dict())
    return _exit_code_for_status(report.status)


async def cmd_wait(args: argparse.Namespace) -> int:
    vendor = factory.get_vendor_client()
    try:
        return await _wait(args.task_id, vendor)
    finally:
        await vendor.close()


async def cmd_resume(args: argparse.Namespace) -> int:
    vendor = factory.get_vendor_client()
    poller = factory.get_status_poller(vendor=vendor)
    try:
        results = await poller.resume(owner_id=args.owner, on_progress=_print_progress)
    finally:
        await poller.artifact_store.close()
        await vendor.close()

    payload: dict[str, Any] = {}
    exit_code = EXIT_OK
    for task_id, result in results.items():
        if isinstance(result, ServiceError):
            payload[task_id] = {"error": result.to_dict()}
            exit_code = EXIT_FAILED
        else:
            payload[task_id] = result.to_dict()
    _emit(payload)
    return exit_code


async def cmd_recover(args: argparse.Namespace) -> int:
    result = factory.get_recovery_service().recover_orphans(args.owner)
    _emit(result.model_dump())
    return EXIT_FAILED if result.failed else EXIT_OK


async def cmd_init_db(args: argparse.Namespace) -> int:
    ensure_schema()
    _emit({"schema": "ok"})
    return EXIT_OK


COMMANDS = {
    "submit": cmd_submit,
    "status": cmd_status,
    "wait": cmd_wait,
    "resume": cmd_resume,
    "recover": cmd_recover,
    "init-db": cmd_init_db,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="figurine-forge", description="Convert images and prompts into 3D figurines"
    )
    parser.add_argument(
        "--log-level",
        default=settings.LOG_LEVEL,
        help="Log level for stderr output (default: %(default)s)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    submit = sub.add_parser("submit", help="Submit a conversion job and print its task id")
    submit.add_argument("--owner", required=True, help="Owner (user) id")
    source = submit.add_mutually_exclusive_group(required=True)
    source.add_argument("--image", help="Image file path, http(s) URL or data URI")
    source.add_argument("--prompt", help="Text prompt for text-to-3D")
    submit.add_argument("--art-style", choices=[s.value for s in ArtStyle])
    submit.add_argument("--ai-model")
    submit.add_argument("--topology", choices=[t.value for t in Topology])
    submit.add_argument("--polycount", type=int, help="Target polygon count")
    submit.add_argument("--texture-richness", choices=[t.value for t in TextureRichness])
    submit.add_argument("--no-moderation", action="store_true")
    submit.add_argument("--negative-prompt")
    submit.add_argument("--wait", action="store_true", help="Poll until the task finishes")

    status = sub.add_parser("status", help="Print the normalized status of a task")
    status.add_argument("task_id")

    wait = sub.add_parser("wait", help="Poll a task until it finishes")
    wait.add_argument("task_id")

    resume = sub.add_parser("resume", help="Resume polling every unfinished task")
    resume.add_argument("--owner", help="Only resume tasks of this owner")

    recover = sub.add_parser("recover", help="Link persisted models that have no figurine")
    recover.add_argument("--owner", required=True)

    sub.add_parser("init-db", help="Create database tables")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(level=args.log_level.upper())

    handler = COMMANDS[args.command]
    try:
        return asyncio.run(handler(args))
    except pydantic.ValidationError as e:
        _emit({"error": {"code": "INVALID_INPUT", "message": str(e)}})
        return EXIT_INVALID
    except ServiceError as e:
        logger.error(f"{args.command} failed: {e}")
        _emit({"error": e.to_dict()})
        return _exit_code_for_error(e)
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
