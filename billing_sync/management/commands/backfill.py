from django.core.management.base import CommandError

from billing_sync.management.base import SyncCommand
from billing_sync.services.backfill import run_backfill
from billing_sync.services.checkpoints import get_checkpoint_store
from billing_sync.services.iugu_client import RESOURCE_ENDPOINTS, IuguClient


class Command(SyncCommand):
    help = "Page through Iugu resources and record every page in the staging table."

    def add_arguments(self, parser):
        parser.add_argument("resources", nargs="*", help="Resources to backfill (default SYNC_RESOURCES).")
        parser.add_argument("--no-resume", action="store_true", help="Ignore an unfinished run and start at page 1.")
        parser.add_argument("--max-pages", type=int, help="Page bound for this run (default IUGU_MAX_PAGES).")

    def run(self, config, **opts):
        resources = opts.get("resources") or list(config.sync_resources)
        unknown = [r for r in resources if r not in RESOURCE_ENDPOINTS]
        if unknown:
            raise CommandError(f"Unknown resource(s): {', '.join(unknown)}", returncode=2)

        client = IuguClient(config)
        store = get_checkpoint_store(config)

        def progress(page, count, result):
            self.stdout.write(
                f"{result.resource} page {page}: {count} records (total {result.records_staged})"
            )

        incomplete = []
        for resource in resources:
            result = run_backfill(
                resource, config, client, store,
                resume=not opts.get("no_resume"),
                max_pages=opts.get("max_pages"),
                on_page=progress,
            )
            line = (
                f"{resource}: {result.records_staged} records in {result.pages_recorded} pages "
                f"(run {result.run_id}, {result.stop_reason})"
            )
            if result.skipped_pages:
                line += f" skipped pages: {result.skipped_pages}"
            if result.completed:
                self.stdout.write(self.style.SUCCESS(line))
            else:
                self.stdout.write(self.style.WARNING(line))
                incomplete.append(resource)

        if incomplete:
            raise CommandError(f"Backfill stopped early for: {', '.join(incomplete)}; re-run to resume")
