from django.core.management.base import CommandError

from billing_sync.management.base import SyncCommand
from billing_sync.models import StagingBatch, WebhookEvent
from billing_sync.services.dispatcher import requeue_failed, requeue_stuck

MODELS = {"events": WebhookEvent, "staging": StagingBatch}


class Command(SyncCommand):
    help = "Reset failed (or, with --stuck-older-than, stuck processing) webhook events or staging batches to pending."

    def add_arguments(self, parser):
        parser.add_argument("kind", choices=sorted(MODELS))
        parser.add_argument("--ids", type=int, nargs="+", help="Only these ids.")
        parser.add_argument(
            "--stuck-older-than", type=int, metavar="MINUTES",
            help="Requeue rows claimed more than MINUTES ago and still processing, instead of failed rows.",
        )

    def run(self, config, **opts):
        model = MODELS[opts["kind"]]
        minutes = opts.get("stuck_older_than")
        if minutes is not None:
            if minutes < 1:
                raise CommandError("--stuck-older-than must be at least 1 minute", returncode=2)
            count = requeue_stuck(model, minutes, opts.get("ids"))
            self.stdout.write(self.style.SUCCESS(f"Requeued {count} stuck {opts['kind']} row(s)."))
            return
        count = requeue_failed(model, opts.get("ids"))
        self.stdout.write(self.style.SUCCESS(f"Requeued {count} {opts['kind']} row(s)."))
