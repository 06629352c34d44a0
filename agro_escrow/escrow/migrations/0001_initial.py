import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='EscrowEntry',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('order_id', models.CharField(max_length=64, unique=True)),
                ('total_amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('upfront_amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('remaining_amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('status', models.CharField(choices=[('pending', 'Payment Pending'), ('upfront_held', 'Upfront Held'), ('remaining_released', 'Remaining Released'), ('disputed', 'Disputed'), ('refunded', 'Refunded'), ('completed', 'Completed')], default='pending', max_length=20)),
                ('payment_reference', models.CharField(blank=True, max_length=255)),
                ('upfront_payment_reference', models.CharField(blank=True, max_length=255)),
                ('delivery_due_at', models.DateTimeField(blank=True, null=True)),
                ('delivered_at', models.DateTimeField(blank=True, null=True)),
                ('dispute_reason', models.TextField(blank=True, null=True)),
                ('disputed_at', models.DateTimeField(blank=True, null=True)),
                ('dispute_resolution', models.CharField(blank=True, choices=[('buyer', 'Buyer'), ('farmer', 'Farmer')], max_length=10)),
                ('dispute_resolved_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('refunded_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('buyer', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='escrows_as_buyer', to=settings.AUTH_USER_MODEL)),
                ('farmer', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='escrows_as_farmer', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Escrow Entry',
                'verbose_name_plural': 'Escrow Entries',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['status', 'delivery_due_at'], name='escrow_status_due_idx')],
                'constraints': [models.CheckConstraint(condition=models.Q(('upfront_amount__gte', 0), ('remaining_amount__gte', 0)), name='escrow_split_non_negative')],
            },
        ),
        migrations.CreateModel(
            name='EscrowEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('kind', models.CharField(choices=[('transition', 'Transition'), ('rejected', 'Rejected event'), ('alert', 'Operator alert')], default='transition', max_length=20)),
                ('event', models.CharField(max_length=40)),
                ('from_status', models.CharField(blank=True, max_length=20)),
                ('to_status', models.CharField(blank=True, max_length=20)),
                ('message', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('actor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='escrow_events', to=settings.AUTH_USER_MODEL)),
                ('entry', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='events', to='escrow.escrowentry')),
            ],
            options={
                'ordering': ['created_at', 'id'],
            },
        ),
    ]
