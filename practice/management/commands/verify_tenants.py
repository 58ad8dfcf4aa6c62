import uuid

from django.core.management.base import BaseCommand, CommandError

from practice.models import Tenant
from practice.services.tenancy import (
    disconnect_all_tenants,
    get_tenant_client,
    management_connection,
    tenant_connection_url,
)


class Command(BaseCommand):
    help = "Check that a registry client can be built for every tenant database; --ping also queries them."

    def add_arguments(self, parser):
        parser.add_argument("--ping", action="store_true", help="run SELECT 1 on each tenant database")
        parser.add_argument("--tenant", help="only this tenant (id or slug)")

    def handle(self, *args, **opts):
        failures = 0
        try:
            management_connection().ensure_connection()
            self.stdout.write(self.style.SUCCESS("management database reachable"))

            tenants = Tenant.objects.exclude(db_name="").order_by("name")
            if opts.get("tenant"):
                key = opts["tenant"]
                tenants = tenants.filter(slug=key) if not _is_uuid(key) else tenants.filter(id=key)

            for tenant in tenants:
                url = tenant_connection_url(tenant)
                try:
                    client = get_tenant_client(url)
                    if opts["ping"]:
                        with client.connection.cursor() as c:
                            c.execute("SELECT 1")
                    self.stdout.write(self.style.SUCCESS(f"ok: {tenant.slug} -> {client.alias}"))
                except Exception as e:
                    failures += 1
                    self.stderr.write(self.style.ERROR(f"fail: {tenant.slug}: {e}"))
        finally:
            closed = disconnect_all_tenants()
            self.stdout.write(f"{closed} tenant client(s) disconnected")

        if failures:
            raise CommandError(f"{failures} tenant database(s) failed")


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True
