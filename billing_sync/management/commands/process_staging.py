from billing_sync.management.base import SyncCommand
from billing_sync.services.router import RESOURCE_ROUTES
from billing_sync.services.workers import process_staging_batches, run_worker_loop


class Command(SyncCommand):
    help = "Apply pending staging batches (recorded by backfill) to the billing tables."

    def add_arguments(self, parser):
        parser.add_argument("--entity", choices=sorted(RESOURCE_ROUTES), help="Only batches of this resource.")
        parser.add_argument("--batch-size", type=int, help="Batches per claim (default WORKER_BATCH_SIZE).")
        parser.add_argument("--loop", action="store_true", help="Keep polling instead of exiting when idle.")
        parser.add_argument("--max-rounds", type=int, help="Stop after this many claim rounds.")

    def run(self, config, **opts):
        entity = opts.get("entity")

        def report(summary, total):
            if summary.claimed:
                self.stdout.write(
                    f"batches claimed={summary.claimed} done={summary.succeeded} failed={summary.failed}"
                )

        total = run_worker_loop(
            lambda n: process_staging_batches(n, entity),
            opts.get("batch_size") or config.worker_batch_size,
            config.worker_poll_seconds,
            max_rounds=opts.get("max_rounds"),
            stop_when_idle=not opts.get("loop"),
            on_round=report,
        )
        self.stdout.write(self.style.SUCCESS(
            f"Done. batches claimed={total.claimed} done={total.succeeded} failed={total.failed}"
        ))
