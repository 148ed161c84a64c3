import argparse
import json
import logging
import mimetypes
import signal
import sys
import threading
from pathlib import Path

import yaml

import utils.others as otherutils
from core.errors import ConfigurationError, CrosspostError, InternalError, ValidationError
from core.models.request import build_publish_request
from core.service import CrosspostService
from socials.base import MediaItem
from socials.types import DispatchOutcome
from utils.config import load_settings
from utils.status_monitor import StatusMonitor

logger = logging.getLogger("crosspost")


def read_payload_file(path):
    """
    Load a post payload (YAML or JSON) and the media files it lists.

    The payload carries the same fields as a publish request, plus an optional
    `files` list: each entry is a path, or a mapping with `path` and an
    optional `mime_type`. Relative paths resolve against the payload file.
    """
    payload_path = Path(path)
    try:
        with open(payload_path, encoding="utf-8") as f:
            payload = yaml.safe_load(f)
    except FileNotFoundError:
        raise ValidationError(f"Payload file {payload_path} not found")
    except yaml.YAMLError as e:
        raise ValidationError(f"Payload file {payload_path} is not valid YAML/JSON: {e}")

    if not isinstance(payload, dict):
        raise ValidationError("Payload file must contain a mapping")

    media = []
    for index, entry in enumerate(payload.pop("files", None) or []):
        if isinstance(entry, str):
            entry = {"path": entry}
        if not isinstance(entry, dict) or not entry.get("path"):
            raise ValidationError(f"files[{index}] must be a path or a mapping with 'path'")

        file_path = Path(entry["path"])
        if not file_path.is_absolute():
            file_path = payload_path.parent / file_path
        try:
            data = file_path.read_bytes()
        except OSError as e:
            raise ValidationError(f"files[{index}] could not be read: {e}")

        mime_type = entry.get("mime_type") or mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
        media.append(MediaItem(data=data, file_name=file_path.name, mime_type=mime_type))

    return payload, media


def _print(data):
    print(json.dumps(data, indent=2, ensure_ascii=False))


def cmd_run(service, settings, monitor, args):
    stop = threading.Event()

    def _handle_signal(signum, _frame):
        logger.info("Received signal %s; shutting down.", signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    service.scheduler.start()
    monitor.set_status("RUNNING")
    try:
        stop.wait()
    finally:
        service.scheduler.stop(timeout=30)
    return 0


def cmd_post(service, settings, monitor, args):
    payload, media = read_payload_file(args.file)
    request, schedule_at = build_publish_request(payload, media)

    if schedule_at is not None:
        # The scheduler that runs the job is another process with its own key
        if settings.encryption_key_source == "ephemeral":
            raise ConfigurationError(
                "Scheduling needs a configured encryption key "
                "(scheduler.encryption_key or CROSSPOST_ENCRYPTION_KEY); "
                "a job sealed with a throwaway key could never be opened."
            )
        service.scheduler.load()

    result = service.submit(request, schedule_at)
    _print(result.to_dict())
    if isinstance(result, DispatchOutcome) and result.overall != "success":
        return 3
    return 0


def cmd_list(service, settings, monitor, args):
    service.scheduler.load()
    _print([job.to_dict() for job in service.scheduler.list_jobs()])
    return 0


def cmd_show(service, settings, monitor, args):
    service.scheduler.load()
    _print(service.scheduler.get_job(args.job_id).to_dict())
    return 0


def cmd_cancel(service, settings, monitor, args):
    service.scheduler.load()
    _print(service.scheduler.cancel(args.job_id).to_dict())
    return 0


def cmd_status(service, settings, monitor, args):
    service.scheduler.load()
    _print({"jobs": service.status(), "monitor": StatusMonitor.read(settings.status_file)})
    return 0


COMMANDS = {
    "run": cmd_run,
    "post": cmd_post,
    "list": cmd_list,
    "show": cmd_show,
    "cancel": cmd_cancel,
    "status": cmd_status,
}


def build_parser():
    # fmt: off
    parser = argparse.ArgumentParser(description="Publish posts and threads to X, Bluesky and Mastodon, now or later.")
    parser.add_argument("--config", type=str, default=None, help="Path to the configuration file (default: config/config.yaml).")
    parser.add_argument("--nosocial", action="store_true", help="Log posts instead of publishing them.")
    parser.add_argument("--dry-run", dest="nosocial", action="store_true", help="Alias for --nosocial (no posting).")
    parser.add_argument("--console", action="store_true", help="Write logs to console instead of a file.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("run", help="Run the scheduler until interrupted.")
    post = subparsers.add_parser("post", help="Publish (or schedule) the payload in FILE.")
    post.add_argument("file", help="YAML or JSON payload file.")
    subparsers.add_parser("list", help="List scheduled jobs.")
    show = subparsers.add_parser("show", help="Show one job.")
    show.add_argument("job_id")
    cancel = subparsers.add_parser("cancel", help="Cancel a scheduled job.")
    cancel.add_argument("job_id")
    subparsers.add_parser("status", help="Print job counts and the running scheduler's status.")
    # fmt: on
    return parser


def _fail(command, error, monitor):
    logger.error("%s failed: %s", command, error.detail)
    if monitor is not None:
        monitor.record_error(error.detail)
    _print(error.to_problem())
    return 1


def main(argv=None):
    """
    Entry point for the crosspost command line.

    Parses arguments, resolves settings, sets up logging, wires the service
    and runs the requested subcommand. Only `run` owns the status monitor;
    the one-shot commands never write status.json.
    """
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config, use_defaults=args.config is None)
    except CrosspostError as e:
        print(f"Configuration error: {e.detail}", file=sys.stderr)
        return 2

    settings.nosocial = settings.nosocial or args.nosocial
    debug = settings.debug or args.debug

    otherutils.setup_logging(settings, console=args.console, debug=debug)
    otherutils.log_startup_info(args, settings)

    monitor = StatusMonitor(settings.status_file) if args.command == "run" else None
    service = CrosspostService.from_settings(settings, monitor=monitor)

    try:
        return COMMANDS[args.command](service, settings, monitor, args)
    except CrosspostError as e:
        return _fail(args.command, e, monitor)
    except Exception as e:
        logger.exception("Unexpected error running %s", args.command)
        if monitor is not None:
            monitor.set_status("ERROR")
        return _fail(args.command, InternalError(str(e) or None), monitor)
    finally:
        if monitor is not None:
            monitor.shutdown()


if __name__ == "__main__":
    sys.exit(main())
