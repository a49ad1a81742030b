from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import queue

from .config import load_config
from .formatter import format_activity_text, format_error_text, format_report_text
from .polling.scheduler import Poller
from .runner import build_poller


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ticketwatch", description="Poll a report tracker for new reports and activities")
    p.add_argument("--config", required=True, help="Path to JSON config file")
    p.add_argument(
        "--log-level",
        default=None,
        help="Log level (DEBUG/INFO/WARNING/ERROR). Defaults to env TICKETWATCH_LOG_LEVEL or INFO",
    )

    mode = p.add_mutually_exclusive_group(required=False)
    mode.add_argument("--once", action="store_true", help="Run one poll pass, print the events and exit")
    mode.add_argument("--daemon", action="store_true", help="Poll forever and log events as they arrive")
    return p


def _resolve_log_level(value: str | None) -> int:
    v = (value or "").strip().upper()
    if not v:
        return logging.INFO
    level = logging.getLevelNamesMapping().get(v)
    if isinstance(level, int):
        return level
    return logging.INFO


def run_once(poller: Poller) -> int:
    """
    单次模式：同步跑一轮（通道需为无界），结束后依次输出三个通道的内容。
    """
    report = poller.engine.poll_once()
    channels = poller.engine.channels
    for err in channels.errors.drain():
        print(format_error_text(err))
    for r in channels.reports.drain():
        print(format_report_text(r))
    for a in channels.activities.drain():
        print(format_activity_text(a))
    logging.getLogger("ticketwatch").info(
        "once done: duration_ms=%d pages=%d candidates=%d new_reports=%d new_activities=%d detail_errors=%d aborted=%s",
        report.duration_ms,
        report.pages_fetched,
        report.candidates,
        report.reports_emitted,
        report.activities_emitted,
        report.detail_errors,
        report.aborted,
    )
    return 0


def consume_forever(poller: Poller, *, receive_timeout: float = 0.5) -> None:
    """
    daemon 模式的消费者：轮流读取三个通道。

    错误只记录不退出；任何一个通道长时间无人读取都会阻塞 worker，所以三个都要读。
    """
    logger = logging.getLogger("ticketwatch")
    while poller.is_running():
        if _consume_ready(poller, logger):
            continue
        try:
            activity = poller.activities.receive(timeout=receive_timeout)
        except queue.Empty:
            continue
        logger.info("%s", format_activity_text(activity))

    # worker 已退出：读完已投递的事件
    while _consume_ready(poller, logger):
        pass


def _consume_ready(poller: Poller, logger: logging.Logger) -> bool:
    got_any = False
    err = poller.errors.try_receive()
    if err is not None:
        got_any = True
        logger.warning("%s", format_error_text(err))
    report = poller.reports.try_receive()
    if report is not None:
        got_any = True
        logger.info("%s", format_report_text(report))
    activity = poller.activities.try_receive()
    if activity is not None:
        got_any = True
        logger.info("%s", format_activity_text(activity))
    return got_any


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    env_log_level = os.environ.get("TICKETWATCH_LOG_LEVEL")
    log_level = _resolve_log_level(args.log_level or env_log_level)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger = logging.getLogger("ticketwatch")

    config = load_config(args.config)
    mode = "daemon" if args.daemon and not args.once else "once"
    if mode == "once":
        config = dataclasses.replace(config, channel_capacity=None)

    logger.info("ticketwatch start: mode=%s config=%s", mode, args.config)
    logger.info(
        "config: base_url=%s programs=%s poll_interval_seconds=%d window_seconds=%d dedup_capacity=%d dedup_ttl_seconds=%.0f sqlite_path=%s prune=%s",
        config.api.base_url,
        ",".join(config.filter.program) if config.filter.program else "<none>",
        config.poll_interval_seconds,
        config.window_seconds,
        config.dedup.capacity,
        config.dedup_ttl_seconds(),
        config.state.sqlite_path or "<memory>",
        config.state.prune,
    )
    if not config.filter.program:
        logger.warning("no program configured; listing will cover every program the credentials can see")

    poller = build_poller(config)
    if mode == "once":
        try:
            return run_once(poller)
        finally:
            poller.engine.state.close()

    poller.start()
    try:
        consume_forever(poller)
    except KeyboardInterrupt:
        logger.info("interrupted, stopping poller")
    finally:
        poller.stop()
        if poller.is_running():
            logger.warning("poller did not stop in time; report state left open")
        else:
            poller.engine.state.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
