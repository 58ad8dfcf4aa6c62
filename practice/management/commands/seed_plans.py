from django.core.management.base import BaseCommand

from practice.services.plans import seed_plans


class Command(BaseCommand):
    help = "Create or refresh the Starter/Pro/Network subscription plans (idempotent)."

    def handle(self, *args, **opts):
        created, updated = seed_plans()
        self.stdout.write(self.style.SUCCESS(f"plans ready: {created} created, {updated} updated"))
