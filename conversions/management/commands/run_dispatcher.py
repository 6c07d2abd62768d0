import signal

from django.core.management.base import BaseCommand

from video_converter.logger import get_logger

from conversions.dispatcher import Dispatcher

logger = get_logger(__name__)


class Command(BaseCommand):
    help = "Poll for pending conversion jobs and process them one at a time."

    def add_arguments(self, parser):
        parser.add_argument(
            "--poll-interval",
            type=float,
            default=None,
            help="Seconds to sleep when no job is pending (default: DISPATCH_POLL_INTERVAL).",
        )
        parser.add_argument(
            "--max-cycles",
            type=int,
            default=None,
            help="Stop after this many poll cycles (default: run until signalled).",
        )

    def handle(self, *args, **options):
        dispatcher = Dispatcher(poll_interval=options["poll_interval"])

        def signal_handler(signum, _frame):
            logger.info(f"Received signal {signum}, shutting down dispatcher...")
            dispatcher.stop()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        dispatcher.run_forever(max_cycles=options["max_cycles"])
