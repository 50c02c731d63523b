from billing_sync.management.base import SyncCommand
from billing_sync.services.workers import process_pending_events, run_worker_loop


class Command(SyncCommand):
    help = "Claim pending webhook events and apply them to the billing tables."

    def add_arguments(self, parser):
        parser.add_argument("--batch-size", type=int, help="Events per claim (default WORKER_BATCH_SIZE).")
        parser.add_argument("--loop", action="store_true", help="Keep polling instead of exiting when idle.")
        parser.add_argument("--poll-seconds", type=float, help="Idle wait between polls (default WORKER_POLL_SECONDS).")
        parser.add_argument("--max-rounds", type=int, help="Stop after this many claim rounds.")

    def run(self, config, **opts):
        def report(summary, total):
            if summary.claimed:
                self.stdout.write(
                    f"claimed={summary.claimed} ok={summary.succeeded} failed={summary.failed} "
                    f"(total ok={total.succeeded} failed={total.failed})"
                )

        total = run_worker_loop(
            process_pending_events,
            opts.get("batch_size") or config.worker_batch_size,
            opts.get("poll_seconds") or config.worker_poll_seconds,
            max_rounds=opts.get("max_rounds"),
            stop_when_idle=not opts.get("loop"),
            on_round=report,
        )
        self.stdout.write(self.style.SUCCESS(
            f"Done. claimed={total.claimed} ok={total.succeeded} failed={total.failed} generic={total.fallback}"
        ))
