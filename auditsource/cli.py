from __future__ import annotations
import argparse
import logging
import os
import time
from auditsource.checkpoint import FileCheckpointStore
from auditsource.config import DEFAULT_CHECKPOINT_PATH, Settings, load_settings
from auditsource.errors import AuditSourceError, EventDeliveryError
from auditsource.publisher import KafkaEventChannel
from auditsource.reader import build_reader
from auditsource.source import AuditSource

logger = logging.getLogger("auditsource")


def _settings(args) -> Settings:
    return load_settings(
        database_url=args.database_url,
        table_name=args.table,
        cursor_column=args.cursor_column,
        cursor_column_type=args.cursor_column_type,
        query=args.query,
        checkpoint_path=args.checkpoint_path,
    )


def _checkpoint_path(args) -> str:
    # no reader settings needed here
    return args.checkpoint_path or os.getenv("AUDIT_CHECKPOINT_PATH") or DEFAULT_CHECKPOINT_PATH


def cmd_run(args):
    s = _settings(args)
    channel = KafkaEventChannel(bootstrap=s.kafka_bootstrap, topic=s.topic)
    source = AuditSource.configure(s, channel)
    logger.info("audit source started: table=%s cursor_column=%s topic=%s batch_size=%d",
                s.table_name or "<query>", s.cursor_column, s.topic, s.batch_size)
    cycles = 0
    try:
        while True:
            cycles += 1
            try:
                status = source.process()
            except EventDeliveryError:
                if args.once:
                    raise
                logger.warning("cycle %d failed, next attempt in %.1fs", cycles, args.error_pause)
                time.sleep(args.error_pause)
                continue
            if args.once:
                print({"status": status.value, "committed_value": source.reader.committed_value})
                break
    finally:
        source.stop()


def cmd_query(args):
    reader = build_reader(_settings(args))
    try:
        print(reader.current_query())
    finally:
        reader.close()


def cmd_checkpoint(args):
    store = FileCheckpointStore(_checkpoint_path(args))
    if args.action == "set":
        if not args.value or not args.value.strip():
            raise SystemExit("checkpoint set needs a non-empty value")
        store.save(args.value.strip())
    elif args.action == "reset":
        store.reset()
    print({"checkpoint_path": store.path, "committed_value": store.load()})


def _resolve_log_level(value: str | None) -> int:
    v = (value or "").strip().upper()
    level = logging.getLevelName(v) if v else logging.INFO
    return level if isinstance(level, int) else logging.INFO


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="auditsource", description="Incremental audit table extractor")
    p.add_argument("--database-url")
    p.add_argument("--table")
    p.add_argument("--cursor-column")
    p.add_argument("--cursor-column-type")
    p.add_argument("--query")
    p.add_argument("--checkpoint-path")
    p.add_argument("--log-level", default=None, help="Defaults to env AUDIT_LOG_LEVEL or INFO")
    sub = p.add_subparsers(dest="cmd", required=True)

    r = sub.add_parser("run")
    r.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    r.add_argument("--error-pause", type=float, default=5.0, help="Seconds to wait after a failed cycle")
    r.set_defaults(fn=cmd_run)

    q = sub.add_parser("query")
    q.set_defaults(fn=cmd_query)

    c = sub.add_parser("checkpoint")
    c.add_argument("action", choices=["show", "set", "reset"])
    c.add_argument("value", nargs="?")
    c.set_defaults(fn=cmd_checkpoint)
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=_resolve_log_level(args.log_level or os.environ.get("AUDIT_LOG_LEVEL")),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    try:
        args.fn(args)
    except AuditSourceError as e:
        logger.error("%s: %s", type(e).__name__, e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
