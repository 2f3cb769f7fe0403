import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('orders', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='AuditEvent',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('event_type', models.CharField(db_index=True, max_length=50)),
                ('actor_role', models.CharField(choices=[('ADMIN', 'Admin'), ('BUYER', 'Buyer'), ('MANUFACTURER', 'Manufacturer'), ('SYSTEM', 'System')], max_length=20)),
                ('actor_id', models.CharField(blank=True, max_length=64)),
                ('metadata', models.JSONField(blank=True, default=dict, help_text='Additional context data (from/to state, QC round, reasons)')),
                ('created_at', models.DateTimeField(db_index=True)),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='audit_events', to='orders.order')),
            ],
            options={
                'verbose_name': 'Audit Event',
                'verbose_name_plural': 'Audit Events',
                'ordering': ['created_at', 'id'],
                'indexes': [models.Index(fields=['order', 'created_at'], name='audit_order_created_idx')],
            },
        ),
    ]
