import argparse
import logging
import sys
from typing import List, Optional

from golazo.core.config import Config, load_config
from golazo.core.models import Tier
from golazo.core.predictors import PredictionFusionEngine
from golazo.jobs.dispatch import AlertDispatcher
from golazo.jobs.monitor import MonitoringOrchestrator
from golazo.jobs.scheduler import JobScheduler
from golazo.services.api_client import ApiFootballSource
from golazo.services.detector import OpportunityDetector
from golazo.services.selector import FixturePrioritySelector
from golazo.services.storage import SQLiteRepository
from golazo.services.subscribers import StaticSubscriberDirectory
from golazo.services.telegram import ConsoleNotifier, TelegramNotifier
from golazo.utils.concurrency import configure_upstream_pool
from golazo.utils.errors import PersistenceError
from golazo.utils.logger import setup_logger
from golazo.utils.shutdown import ShutdownManager

log = logging.getLogger("golazo")


def build_orchestrator(config: Config, scheduler: JobScheduler) -> MonitoringOrchestrator:
    repository = SQLiteRepository(config.database.path)
    source = ApiFootballSource(config.api)
    engine = PredictionFusionEngine(config.fusion)
    timeout = config.monitoring.upstream_timeout_sec
    # One slot per monitor worker plus the selector's live and upcoming fetches
    configure_upstream_pool(config.monitoring.max_workers + 2)

    selector = FixturePrioritySelector(source, repository, engine, config=config.selection,
                                       tiers=config.tiers, upstream_timeout=timeout)
    detector = OpportunityDetector(source, repository, engine, config=config.detection,
                                   tiers=config.tiers, upstream_timeout=timeout)

    if config.development or not config.telegram.bot_token:
        log.info("Using console notifier")
        notifier = ConsoleNotifier()
    else:
        notifier = TelegramNotifier(config.telegram.bot_token)

    dispatcher = AlertDispatcher(notifier, StaticSubscriberDirectory.from_env(), scheduler,
                                 repository=repository, tiers=config.tiers)
    return MonitoringOrchestrator(selector, detector, dispatcher, repository, scheduler,
                                  config=config.monitoring)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Live football golden-moment monitor.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--simulate", type=str, default=None, metavar="FIXTURE_ID",
                   help="Detect and print the alert for one fixture, then exit.")
    p.add_argument("--tier", type=str, default=Tier.ESTRATEGA.value,
                   choices=[t.value for t in Tier], help="Tier used with --simulate.")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config = load_config()
    setup_logger(config.log_level, config.log_dir)
    config.validate()

    scheduler = JobScheduler()
    orchestrator = build_orchestrator(config, scheduler)

    if args.simulate:
        try:
            orchestrator.repository.initialize()
        except PersistenceError as e:
            log.error("Storage unavailable: %s", e)
            return 1
        result = orchestrator.simulate(args.simulate, Tier(args.tier))
        if result is None:
            print(f"No opportunity for fixture {args.simulate}")
            return 0
        _, messages = result
        print(messages.pre_alert, messages.main_alert, messages.detailed_analysis or "", sep="\n\n")
        return 0

    shutdown = ShutdownManager()
    shutdown.register_shutdown_handler(orchestrator.stop)
    shutdown.register_shutdown_handler(scheduler.shutdown)
    shutdown.register_signal_handlers()

    try:
        orchestrator.start()
    except PersistenceError as e:
        log.error("Fatal startup error: %s", e)
        scheduler.shutdown()
        return 1

    log.info("Monitoring running; Ctrl+C to stop")
    shutdown.wait()
    return 0


if __name__ == "__main__":
    sys.exit(main())
