"""
FaceGuard - Main Entry Point

Attendance clients recognize enrolled people offline and reconcile with a
shared store. Commands:

    store            Run the persistent store (Flask)
    run              Run a camera client with detection and sync timers
    sync             Run one sync cycle against the store
    report           Print the daily attendance report from local state
    scan-duplicates  Flag likely re-registrations in local state
    purge-logs       Remove attendance records of entities from the store
"""

import argparse
import os
import sys
import threading
from pathlib import Path
from typing import List, Optional

from .config import Config, load_config
from .logging_config import get_logger, setup_logging
from .storage import FileKVStore, LocalState

logger = get_logger(__name__)


def _load_local_env() -> None:
    """Load environment variables from a .env file in the working directory if present."""
    env_path = Path.cwd() / '.env'
    if not env_path.exists():
        return

    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        key, value = line.split('=', 1)
        os.environ.setdefault(key.strip(), value.strip())


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog='faceguard',
        description='FaceGuard - Offline Face Attendance with Store Sync'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging (or set DEBUG=true)'
    )

    commands = parser.add_subparsers(dest='command', required=True)

    store = commands.add_parser('store', help='Run the persistent store')
    store.add_argument('--port', type=int, help='Port to listen on (or set STORE_PORT)')

    commands.add_parser('run', help='Run a camera client')
    commands.add_parser('sync', help='Run one sync cycle')

    report = commands.add_parser('report', help='Print the daily report')
    report.add_argument('--entity', help='Only this entity')
    report.add_argument('--date', help='Day as YYYY-MM-DD (default today)')

    commands.add_parser('scan-duplicates', help='Flag likely re-registrations')

    purge = commands.add_parser('purge-logs', help='Remove store attendance records of entities')
    purge.add_argument('--entity', action='append', required=True, help='Entity to purge (repeatable)')

    return parser.parse_args(argv)


def _local_state(config: Config) -> LocalState:
    return LocalState(FileKVStore(config.state_dir), dim=config.embedding_dim)


def run_store(config: Config, port: Optional[int] = None) -> None:
    """Serve the persistent store until interrupted."""
    from .app import create_app

    port = port or config.store_port
    app = create_app(config)
    logger.info(f'Store listening on port {port} (data: {config.store_data_file})')
    app.run(
        host='0.0.0.0',
        port=port,
        threaded=True,
        debug=False,
        use_reloader=False
    )


def run_client(config: Config, stop_flag: Optional[threading.Event] = None) -> None:
    """
    Camera client loop.

    Detection and sync run on their own timers; the main thread only keeps
    the latest frame. On exit the timers stop and one last sync is tried.
    """
    # Lazy imports: only the camera client needs OpenCV and InsightFace
    from .camera import connect_camera, encode_jpeg
    from .client import AttendanceClient
    from .face_app import detect_faces, initialize_face_app

    face_app = initialize_face_app(config)
    client = AttendanceClient(
        config,
        _local_state(config),
        detector=lambda frame: detect_faces(face_app, frame),
        encoder=encode_jpeg,
    )

    video_capture = connect_camera(config.camera_source)
    latest = {'frame': None}
    frame_lock = threading.Lock()

    def read_frame():
        with frame_lock:
            frame = latest['frame']
            latest['frame'] = None
        return frame

    stop_flag = stop_flag or threading.Event()
    client.start(read_frame)
    logger.info('🎬 Client running')

    consecutive_failures = 0
    try:
        while not stop_flag.is_set():
            ret, frame = video_capture.read()
            if not ret or frame is None:
                consecutive_failures += 1
                if consecutive_failures >= 10:
                    logger.error(f'Too many failures ({consecutive_failures}), reconnecting...')
                    video_capture.release()
                    video_capture = connect_camera(config.camera_source)
                    consecutive_failures = 0
                else:
                    stop_flag.wait(0.5)
                continue

            consecutive_failures = 0
            with frame_lock:
                latest['frame'] = frame
    finally:
        video_capture.release()
        logger.info('Camera released')
        client.stop()


def run_sync(config: Config) -> int:
    from .client import AttendanceClient

    report = AttendanceClient(config, _local_state(config)).sync_now()
    return 0 if report.ok else 1


def print_report(config: Config, entity: Optional[str] = None, date: Optional[str] = None) -> None:
    from .recognition.presence import daily_report, summarize

    state = _local_state(config)
    rows = daily_report(state.day_logs(date), entity=entity)
    stats = summarize(state.active_identities(), rows, entity=entity)

    print(f"{'Name':<24} {'Entity':<16} {'Login':<10}{'Logout':<10}{'Duration':<10} Status")
    for row in rows:
        print(
            f'{row.name:<24} {row.entity:<16} {row.login_time:%H:%M:%S}  '
            f'{row.logout_time:%H:%M:%S}  {row.duration:<10} {row.status}'
        )
    print(
        f"Registered: {stats['registered']}  Present: {stats['present']}  "
        f"Active: {stats['active']}  Checked out: {stats['checked_out']}"
    )


def run_scan(config: Config) -> None:
    from .client import AttendanceClient

    client = AttendanceClient(config, _local_state(config))
    scan = client.scan_duplicates(
        on_progress=lambda done, total: logger.debug(f'Scanned {done}/{total}')
    )
    for identity in scan.flagged:
        print(f'{identity.id}: {identity.name} looks like {identity.duplicate_of}')


def purge_logs(config: Config, entities: List[str]) -> None:
    from .repository import StoreRepository

    repository = StoreRepository(config.store_data_file, config.store_uploads_dir, dim=config.embedding_dim)
    removed = repository.purge_entity_logs(entities)
    logger.info(f'✅ Removed {removed} attendance records of {", ".join(entities)}')


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    _load_local_env()
    args = parse_args(argv)
    config = load_config()

    setup_logging('store' if args.command == 'store' else config.client_id, args.debug or config.debug_mode)

    logger.info('=' * 60)
    logger.info(f'FaceGuard - {args.command}')
    logger.info(f'Client: {config.client_id}')
    logger.info(f'Store: {config.store_url}')
    logger.info('=' * 60)

    exit_code = 0
    try:
        if args.command == 'store':
            run_store(config, args.port)
        elif args.command == 'run':
            run_client(config)
        elif args.command == 'sync':
            exit_code = run_sync(config)
        elif args.command == 'report':
            print_report(config, entity=args.entity, date=args.date)
        elif args.command == 'scan-duplicates':
            run_scan(config)
        elif args.command == 'purge-logs':
            purge_logs(config, args.entity)

    except KeyboardInterrupt:
        logger.info('Received keyboard interrupt, shutting down...')
        sys.exit(0)
    except Exception as e:
        logger.error(f'Fatal error: {e}', exc_info=True)
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == '__main__':
    main()
