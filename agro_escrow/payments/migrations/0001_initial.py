import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('escrow', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='PayoutInstruction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('instruction_type', models.CharField(choices=[('payout', 'Payout'), ('refund', 'Refund')], max_length=10)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('provider', models.CharField(max_length=50)),
                ('idempotency_key', models.CharField(max_length=120, unique=True)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('processing', 'Processing'), ('sent', 'Sent, awaiting confirmation'), ('confirmed', 'Confirmed'), ('failed', 'Failed'), ('escalated', 'Escalated')], default='pending', max_length=20)),
                ('attempts', models.PositiveIntegerField(default=0)),
                ('provider_reference', models.CharField(blank=True, max_length=255)),
                ('last_error', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('confirmed_at', models.DateTimeField(blank=True, null=True)),
                ('entry', models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name='instruction', to='escrow.escrowentry')),
                ('recipient', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='payout_instructions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='PayoutMethod',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('provider', models.CharField(choices=[('paystack', 'Paystack'), ('stripe', 'Stripe')], max_length=20)),
                ('is_default', models.BooleanField(default=False)),
                ('is_verified', models.BooleanField(default=False)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='payout_methods', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Payout Method',
                'verbose_name_plural': 'Payout Methods',
                'constraints': [models.UniqueConstraint(condition=models.Q(('is_default', True)), fields=('user', 'provider'), name='one_default_payout_method_per_provider')],
            },
        ),
        migrations.CreateModel(
            name='PaystackPayoutMethod',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('recipient_code', models.CharField(help_text='Paystack transfer recipient code (RCP_...)', max_length=64)),
                ('account_name', models.CharField(help_text="Recipient's full name", max_length=255)),
                ('account_number', models.CharField(blank=True, help_text='Bank account or mobile number', max_length=50)),
                ('bank_name', models.CharField(blank=True, help_text='Bank or mobile network (for display)', max_length=100)),
                ('payout_method', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='paystack_details', to='payments.payoutmethod')),
            ],
        ),
        migrations.CreateModel(
            name='StripePayoutMethod',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('stripe_account_id', models.CharField(help_text='Stripe Connect account ID (acct_...)', max_length=255, unique=True)),
                ('payouts_enabled', models.BooleanField(default=False)),
                ('payout_method', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='stripe_details', to='payments.payoutmethod')),
            ],
        ),
        migrations.CreateModel(
            name='WebhookEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('provider', models.CharField(max_length=50)),
                ('event_id', models.CharField(max_length=255, unique=True)),
                ('received_at', models.DateTimeField(auto_now_add=True)),
            ],
        ),
    ]
