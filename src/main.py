"""
RakshaSetu Main Application Entry Point

Runs the SOS flow and live location sharing from the command line against
the SQLite document store and simulated device adapters.
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

# Add src to Python path
sys.path.insert(0, str(Path(__file__).parent))

from core.config import ConfigurationManager
from core.database import SQLiteDocumentStore, initialize_database
from core.interfaces import SmsGateway
from core.logging import get_logger, initialize_logging
from models.sos import CloseFriendContact, Coordinate, SosContext
from services.sos import (
    ContactBook, LiveLocationManager, MessageComposer, NotificationDispatcher,
    ShakeDetector, SosError, SosService
)
from services.sos.devices import (
    ConsoleAlertPresenter, HttpSmsGateway, LoggingHaptics, LoggingSmsGateway,
    SimulatedLocationProvider, StaticBatteryProvider
)


class RakshaSetuApplication:
    """Wires configuration, storage and device adapters into the SOS flow"""

    def __init__(self, config_dir: str = "config"):
        self.config_manager = ConfigurationManager(config_dir)
        self.db_manager = None
        self.store: Optional[SQLiteDocumentStore] = None
        self.logger = None

    def initialize(self):
        """Load configuration, set up logging and open the database"""
        self.config_manager.load_config()

        initialize_logging(self.config_manager.config)
        self.logger = get_logger('main')
        self.logger.info(f"RakshaSetu {self.config_manager.get('app.version', '1.0.0')} starting")

        self.db_manager = initialize_database(
            self.config_manager.get('database.path', 'data/rakshasetu.db'),
            self.config_manager.get('database.max_connections', 10)
        )
        self.store = SQLiteDocumentStore(self.db_manager)

    def shutdown(self):
        if self.db_manager:
            self.db_manager.close()

    def build_sms_gateway(self) -> SmsGateway:
        gateway_url = self.config_manager.get('sms.gateway_url')
        if gateway_url:
            return HttpSmsGateway(
                gateway_url,
                api_token=self.config_manager.get('sms.api_token', ''),
                timeout_seconds=self.config_manager.get('sms.timeout_seconds', 10)
            )
        return LoggingSmsGateway()

    def build_live_location(self, location, user_id: str) -> LiveLocationManager:
        return LiveLocationManager(
            self.store,
            location,
            user_id=user_id,
            update_interval=self.config_manager.get('live_location.update_interval', 5.0),
            distance_interval=self.config_manager.get('live_location.distance_interval', 1.0),
            share_base_url=self.config_manager.get('live_location.share_base_url')
        )

    def build_sos_service(self, location, battery, sms: SmsGateway) -> SosService:
        config = self.config_manager
        context = SosContext(
            user_id=config.get('user.id', 'local-user'),
            auto_activate_enabled=config.is_auto_activate_enabled()
        )

        composer = MessageComposer(
            header=config.get('sos.header'),
            emergency_message=config.get('sos.emergency_message'),
            imagery=config.get_section('imagery')
        )
        dispatcher = NotificationDispatcher(
            sms,
            self.store,
            context.user_id,
            composer=composer,
            fallback_contacts=[CloseFriendContact.from_dict(c) for c in config.get_fallback_contacts()]
        )

        return SosService(
            context=context,
            location=location,
            battery=battery,
            haptics=LoggingHaptics(),
            alerts=ConsoleAlertPresenter(),
            store=self.store,
            live_location=self.build_live_location(location, context.user_id),
            dispatcher=dispatcher,
            contacts=ContactBook(self.store, context.user_id),
            countdown_seconds=config.get_countdown_seconds(),
            tick_interval=config.get_tick_interval(),
            share_duration_seconds=config.get_share_duration_seconds(),
            battery_timeout=config.get('sos.battery_timeout', 2.0),
            vibration_ms=config.get('sos.vibration_ms', 500)
        )

    async def run_sos(self, args) -> int:
        location = SimulatedLocationProvider(
            Coordinate(args.lat, args.lon),
            permission_granted=not args.deny_permission
        )
        battery = StaticBatteryProvider(args.battery)
        sms = self.build_sms_gateway()
        service = self.build_sos_service(location, battery, sms)

        await service.open()
        try:
            if args.shake:
                activations = []
                detector = ShakeDetector(
                    lambda: activations.append(service.handle_shake()),
                    threshold=self.config_manager.get('shake.threshold', 4.0),
                    debounce_seconds=self.config_manager.get('shake.debounce_seconds', 2.0)
                )
                detector.feed(3.0, 3.0, 3.0)
                started = await activations[0] if activations else False
            else:
                started = await service.start(immediate=args.immediate)

            if not started:
                self.logger.warning("SOS was not started")
                return 1

            if args.cancel_after is not None:
                await asyncio.sleep(args.cancel_after * service.tick_interval)
                service.cancel()

            await service.wait_idle()

            if service.last_result:
                self.logger.info(f"Dispatch result: {service.last_result.summary()}")

            stats = self.db_manager.get_stats()
            self.logger.info(f"SOS alerts on record: {stats.get('sosAlerts', 0)}, live shares: {stats.get('liveLocations', 0)}")

            if args.hold and service.live_session_id:
                self.logger.info("Holding live location share until it expires (Ctrl+C to stop)")
                while service.live_location.is_active(service.live_session_id):
                    await asyncio.sleep(1)
        finally:
            await service.close()
            if isinstance(sms, HttpSmsGateway):
                await sms.close()

        return 0

    async def run_share(self, args) -> int:
        location = SimulatedLocationProvider(Coordinate(args.lat, args.lon))
        manager = self.build_live_location(location, self.config_manager.get('user.id', 'local-user'))

        try:
            session_id = await manager.start(args.minutes * 60)
        except (SosError, ValueError) as e:
            self.logger.error(f"Could not start live location sharing: {e}")
            return 1

        print(manager.share_message(session_id))
        try:
            while manager.is_active(session_id):
                await asyncio.sleep(1)
        finally:
            await manager.stop(session_id)

        return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="RakshaSetu SOS runner")
    parser.add_argument("--config-dir", default="config", help="Directory holding default.yaml / config.yaml")
    parser.add_argument("--lat", type=float, default=12.9716, help="Simulated latitude")
    parser.add_argument("--lon", type=float, default=77.5946, help="Simulated longitude")

    subparsers = parser.add_subparsers(dest="command", required=True)

    sos = subparsers.add_parser("sos", help="Trigger an SOS alert")
    sos.add_argument("--immediate", action="store_true", help="Skip the countdown")
    sos.add_argument("--shake", action="store_true", help="Trigger through a simulated shake gesture")
    sos.add_argument("--cancel-after", type=int, help="Cancel after this many ticks")
    sos.add_argument("--battery", type=float, help="Simulated battery level (0.0-1.0)")
    sos.add_argument("--deny-permission", action="store_true", help="Simulate a refused location permission")
    sos.add_argument("--hold", action="store_true", help="Keep the live location share running until expiry")

    share = subparsers.add_parser("share", help="Share live location")
    share.add_argument("--minutes", type=int, default=1, help="Share duration in minutes")

    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    app = RakshaSetuApplication(args.config_dir)
    app.initialize()

    try:
        if args.command == "sos":
            return await app.run_sos(args)
        return await app.run_share(args)
    finally:
        app.shutdown()


def main(argv: Optional[List[str]] = None):
    """Console script entry point"""
    args = parse_args(argv)
    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(0)


if __name__ == "__main__":
    main()
