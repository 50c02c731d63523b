import logging

from django.core.management.base import BaseCommand, CommandError

from ..config import SyncConfig
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


class SyncCommand(BaseCommand):
    """
    Exit codes: 0 success, 1 fatal error, 2 configuration error.
    Subclasses implement run(config, **options).
    """

    def handle(self, *args, **options):
        try:
            config = SyncConfig.from_settings()
            return self.run(config, **options)
        except ConfigurationError as e:
            raise CommandError(f"Configuration error: {e}", returncode=2) from e
        except CommandError:
            raise
        except KeyboardInterrupt:
            self.stderr.write("Interrupted.")
            raise CommandError("Interrupted", returncode=1)
        except Exception as e:
            logger.exception("%s failed", self.__module__.rsplit(".", 1)[-1])
            raise CommandError(f"Fatal: {e}", returncode=1) from e

    def run(self, config: SyncConfig, **options):
        raise NotImplementedError
