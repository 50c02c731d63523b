from django.core.management.base import CommandError

from billing_sync.management.base import SyncCommand
from billing_sync.services.checkpoints import get_checkpoint_store
from billing_sync.services.incremental import run_forever, sync_all
from billing_sync.services.iugu_client import IuguClient
from billing_sync.services.router import RESOURCE_ROUTES


class Command(SyncCommand):
    help = "Fetch records changed since each resource's checkpoint and upsert them."

    def add_arguments(self, parser):
        parser.add_argument("resources", nargs="*", help="Resources to sync (default SYNC_RESOURCES).")
        parser.add_argument("--loop", action="store_true", help="Repeat every --interval seconds.")
        parser.add_argument("--interval", type=float, help="Seconds between cycles (default SYNC_INTERVAL_SECONDS).")
        parser.add_argument("--max-cycles", type=int, help="With --loop, stop after this many cycles.")

    def report(self, cycle):
        for name, result in cycle.results.items():
            line = (
                f"{name}: applied={result.applied} stale={result.stale} failed={result.failed} "
                f"checkpoint={'advanced' if result.checkpoint_advanced else 'kept'}"
            )
            if result.truncated:
                line += " (page limit reached)"
            style = self.style.SUCCESS if result.checkpoint_advanced and not result.failed else self.style.WARNING
            self.stdout.write(style(line))
        for name, error in cycle.errors.items():
            self.stdout.write(self.style.ERROR(f"{name}: {error}"))

    def run(self, config, **opts):
        resources = opts.get("resources") or list(config.sync_resources)
        unknown = [r for r in resources if r not in RESOURCE_ROUTES]
        if unknown:
            raise CommandError(f"Unknown resource(s): {', '.join(unknown)}", returncode=2)

        client = IuguClient(config)
        store = get_checkpoint_store(config)

        if opts.get("loop"):
            cycles = run_forever(
                opts.get("interval") or config.sync_interval_seconds,
                resources, config, client, store,
                max_cycles=opts.get("max_cycles"),
                on_cycle=self.report,
            )
            self.stdout.write(f"Stopped after {cycles} cycle(s).")
            return

        cycle = sync_all(resources, config, client, store)
        self.report(cycle)
        if cycle.errors:
            raise CommandError(f"Incremental sync failed for: {', '.join(cycle.errors)}")
