from django.core.management.base import BaseCommand
from django.contrib.auth.models import Group, Permission
from django.contrib.auth import get_user_model

from disputes.permissions import MODERATORS_GROUP

User = get_user_model()


class Command(BaseCommand):
    help = "Creates a 'Moderators' group and assigns escrow view permissions. Optionally assign a user."

    def add_arguments(self, parser):
        parser.add_argument('--email', type=str, help='Email of user to assign to Moderators group')

    def handle(self, *args, **options):
        permissions_needed = [
            ("escrow", "view_escrowentry"),
            ("escrow", "view_escrowevent"),
            ("payments", "view_payoutinstruction"),
        ]

        group, created = Group.objects.get_or_create(name=MODERATORS_GROUP)

        if created:
            self.stdout.write(self.style.SUCCESS(f"Created group: {MODERATORS_GROUP}"))
        else:
            self.stdout.write(f"Group '{MODERATORS_GROUP}' already exists.")

        for app_label, codename in permissions_needed:
            perm = Permission.objects.filter(content_type__app_label=app_label, codename=codename).first()
            if perm is None:
                self.stdout.write(self.style.WARNING(f"Permission {app_label}.{codename} not found; run migrate first."))
                continue
            group.permissions.add(perm)

        self.stdout.write(self.style.SUCCESS("Assigned escrow permissions to Moderators group."))

        email = options['email']
        if email:
            try:
                user = User.objects.get(email=email)
                user.groups.add(group)
                self.stdout.write(self.style.SUCCESS(f"User {email} added to Moderators group."))
            except User.DoesNotExist:
                self.stdout.write(self.style.ERROR(f"User with email {email} does not exist."))
